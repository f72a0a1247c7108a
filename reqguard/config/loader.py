"""YAML + env var config loading with pydantic-settings."""

from __future__ import annotations

import os
import signal
import threading
from collections.abc import Callable
from pathlib import Path
from types import FrameType

import structlog
from pydantic import Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from reqguard.config.rate_limit_defaults import RateLimitRule

logger = structlog.get_logger()

CONFIG_FILE_ENV = "GUARD_CONFIG_FILE"
_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


class GuardSettings(BaseSettings):
    """Pipeline configuration: env vars override the YAML file, which overrides model defaults."""

    model_config = SettingsConfigDict(
        env_prefix="GUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    listen_host: str = "0.0.0.0"
    listen_port: int = 8080
    log_level: str = "info"
    log_json: bool = True

    # Honour X-Forwarded-For / X-Forwarded-Proto; only enable behind a proxy
    # that appends the client address and overwrites the protocol header
    trust_proxy: bool = False

    # Request body limit (10MB default)
    max_body_bytes: int = 10 * 1024 * 1024

    # Rate limiting
    rate_limit_rules: list[RateLimitRule] = Field(default_factory=list)
    rate_limit_skip_paths: list[str] = Field(default_factory=list)
    rate_limit_sweep_probability: float = Field(default=0.01, ge=0.0, le=1.0)

    # CSRF
    csrf_enabled: bool = True
    csrf_token_ttl_seconds: int = Field(default=3600, gt=0)
    csrf_header_name: str = "x-csrf-token"
    csrf_exempt_paths: list[str] = Field(default_factory=list)
    session_cookie_name: str = "session_id"

    # HTTPS enforcement
    https_enforcement_enabled: bool = False
    https_excluded_paths: list[str] = Field(default_factory=list)
    https_sensitive_paths: list[str] = Field(default_factory=list)

    # Outbound URL validation
    allowed_domains: list[str] = Field(default_factory=list)
    url_resolve_hostnames: bool = False

    # Filesystem access: URL prefix -> base directory
    path_mounts: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Priority: constructor kwargs > env > .env > YAML > field defaults
        yaml_source = YamlConfigSettingsSource(settings_cls, yaml_file=config_file_path())
        return init_settings, env_settings, dotenv_settings, yaml_source, file_secret_settings


def config_file_path() -> Path:
    """YAML file to read: ``GUARD_CONFIG_FILE`` if set, else the bundled defaults."""
    override = os.environ.get(CONFIG_FILE_ENV)
    return Path(override) if override else _DEFAULTS_PATH


_settings: GuardSettings | None = None
_on_reload: Callable[[GuardSettings], None] | None = None


def get_settings() -> GuardSettings:
    """Return the process-wide settings, loading them on first use."""
    return _settings if _settings is not None else load_settings()


def load_settings() -> GuardSettings:
    """Re-read env vars and the YAML file, replacing the cached settings."""
    global _settings
    settings = GuardSettings()
    _settings = settings
    logger.info(
        "config_loaded",
        config_file=str(config_file_path()),
        https_enforcement=settings.https_enforcement_enabled,
        rate_limit_rules=[rule.name for rule in settings.rate_limit_rules],
        allowed_domains=len(settings.allowed_domains),
    )
    return settings


def _handle_sighup(signum: int, frame: FrameType | None) -> None:
    logger.info("config_reload_triggered")
    try:
        settings = load_settings()
    except ValidationError as exc:
        # Keep serving with the previous configuration.
        logger.error("config_reload_failed", error_count=exc.error_count(), errors=str(exc))
        return
    if _on_reload is not None:
        _on_reload(settings)


def register_reload_handler(on_reload: Callable[[GuardSettings], None] | None = None) -> bool:
    """Reload settings on SIGHUP and pass them to ``on_reload``.

    Returns False when no handler could be installed (not the main thread,
    or a platform without SIGHUP).
    """
    global _on_reload
    if threading.current_thread() is not threading.main_thread():
        logger.debug("skipping_sighup_handler", reason="not main thread")
        return False
    if not hasattr(signal, "SIGHUP"):
        logger.debug("skipping_sighup_handler", reason="signal not supported")
        return False
    _on_reload = on_reload
    signal.signal(signal.SIGHUP, _handle_sighup)
    return True
