"""Rate-limit rule model and path matching helpers."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, Field

# Default thresholds
WINDOW_MS = 60_000  # 1-minute sliding window
MAX_REQUESTS = 1000  # requests per window per client

# Share of the limit at which an "approaching" warning is logged
WARN_RATIO = 0.8


class RateLimitRule(BaseModel):
    """Sliding-window limit applied to one route group."""

    name: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")
    path_prefix: str = Field(default="/", min_length=1)
    window_ms: int = Field(default=WINDOW_MS, gt=0)
    max_requests: int = Field(default=MAX_REQUESTS, ge=0)


def match_rule(path: str, rules: Iterable[RateLimitRule]) -> RateLimitRule | None:
    """Return the first rule whose prefix matches ``path``."""
    for rule in rules:
        if path.startswith(rule.path_prefix):
            return rule
    return None


def is_skipped_path(path: str, skip_paths: Iterable[str]) -> bool:
    """Return True if the path is exempt from rate limiting."""
    return any(path == skip or path.startswith(skip) for skip in skip_paths)
