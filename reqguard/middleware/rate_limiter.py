"""In-process sliding-window rate limiter middleware."""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from starlette.requests import Request
from starlette.responses import Response

from reqguard.config.rate_limit_defaults import WARN_RATIO, RateLimitRule, is_skipped_path, match_rule
from reqguard.errors import RateLimitExceeded
from reqguard.middleware.pipeline import Middleware, RequestContext
from reqguard.store.rate_window import RateWindowStore

logger = structlog.get_logger()


class RateLimiter(Middleware):
    """Sliding-window rate limiter backed by a ``RateWindowStore``.

    - Route groups come from ``rules`` (first matching path prefix wins);
      unmatched paths are not limited
    - ``skip_paths`` are never limited (frequently polled endpoints)
    - Counters are per rule and per client identifier
    - Exceeding the limit is an expected outcome: 429 with a retry hint,
      logged as a warning
    - Injects X-RateLimit-* response headers
    """

    def __init__(
        self,
        store: RateWindowStore,
        rules: Iterable[RateLimitRule],
        *,
        skip_paths: Iterable[str] = (),
    ) -> None:
        self.store = store
        self.rules = list(rules)
        self.skip_paths = tuple(skip_paths)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        path = request.url.path
        if is_skipped_path(path, self.skip_paths):
            return None

        rule = match_rule(path, self.rules)
        if rule is None:
            return None

        key = f"{rule.name}:{context.client_id}"
        decision = self.store.check(key, rule.window_ms, rule.max_requests)

        context.extra["rate_limit_max"] = rule.max_requests
        context.extra["rate_limit_remaining"] = decision.remaining

        if decision.allowed:
            if rule.max_requests and decision.count >= rule.max_requests * WARN_RATIO:
                logger.warning(
                    "rate_limit_approaching",
                    rule=rule.name,
                    current=decision.count,
                    max=rule.max_requests,
                )
            return None

        logger.warning(
            "rate_limit_exceeded",
            rule=rule.name,
            current=decision.count,
            max=rule.max_requests,
            window_ms=rule.window_ms,
            method=request.method,
            path=path,
            retry_after=decision.retry_after,
        )
        return RateLimitExceeded(decision.retry_after, limit=rule.max_requests).to_response()

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        """Inject X-RateLimit-* headers into responses."""
        if "rate_limit_max" in context.extra:
            response.headers["X-RateLimit-Limit"] = str(context.extra["rate_limit_max"])
            response.headers["X-RateLimit-Remaining"] = str(context.extra["rate_limit_remaining"])
        return response
