"""Shared test fixtures."""

from __future__ import annotations

import pytest
from fastapi import APIRouter, Request
from fastapi.testclient import TestClient

from reqguard.config.rate_limit_defaults import RateLimitRule
from reqguard.store.csrf_tokens import CSRFTokenStore
from reqguard.store.rate_window import RateWindowStore


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide default settings for all tests."""
    monkeypatch.setenv("GUARD_LOG_JSON", "false")
    monkeypatch.setenv("GUARD_LOG_LEVEL", "debug")

    # Reset cached settings
    import reqguard.config.loader as loader
    loader._settings = None
    loader._on_reload = None
    yield
    loader._settings = None
    loader._on_reload = None


def _echo_router() -> APIRouter:
    router = APIRouter()

    @router.post("/api/posts")
    async def create_post(request: Request):
        return {"received": await request.json()}

    @router.post("/api/raw")
    async def raw(request: Request):
        return {"body": (await request.body()).decode("utf-8")}

    @router.post("/api/web3/connect")
    async def web3_connect(request: Request):
        return {"connected": True}

    @router.get("/api/objects/avatar/{name:path}")
    async def avatar(name: str, request: Request):
        return {"path": request.state.security_context.extra.get("resolved_path")}

    @router.get("/api/fetch")
    async def fetch(url: str, request: Request):
        return {"url": request.app.state.url_validator.validate_url(url)}

    return router


@pytest.fixture
def guard_settings(tmp_path):
    """Settings factory with test-friendly defaults; keyword overrides win."""
    from reqguard.config.loader import GuardSettings

    def _build(**overrides) -> GuardSettings:
        values = dict(
            log_json=False,
            log_level="debug",
            rate_limit_rules=[
                RateLimitRule(name="api", path_prefix="/api/", window_ms=60_000, max_requests=100),
            ],
            rate_limit_skip_paths=[],
            csrf_exempt_paths=["/api/web3/connect"],
            https_enforcement_enabled=False,
            https_excluded_paths=["/health", "/health/live", "/health/ready"],
            https_sensitive_paths=["/api/csrf-token"],
            allowed_domains=["pinata.cloud"],
            path_mounts={"/api/objects/avatar/": str(tmp_path)},
        )
        values.update(overrides)
        return GuardSettings(**values)

    return _build


@pytest.fixture
def make_client(guard_settings):
    """Start an app with the echo routes; yields a factory taking settings overrides."""
    from reqguard.main import create_app

    clients = []

    def _make(**overrides) -> TestClient:
        app = create_app(
            settings=guard_settings(**overrides),
            routers=[_echo_router()],
            rate_store=RateWindowStore(sweep_probability=0.0),
            csrf_store=CSRFTokenStore(),
        )
        client = TestClient(app, raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    """Create a test client with default test settings."""
    return make_client()
