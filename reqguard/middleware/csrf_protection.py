"""CSRF token verification middleware for state-changing requests."""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from starlette.requests import Request
from starlette.responses import Response

from reqguard.errors import CSRFValidationFailed
from reqguard.middleware.pipeline import Middleware, RequestContext
from reqguard.store.csrf_tokens import CSRFTokenStore

logger = structlog.get_logger()

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

DEFAULT_HEADER_NAME = "x-csrf-token"


class CSRFProtection(Middleware):
    """Require a valid per-session token on every state-changing request.

    - GET/HEAD/OPTIONS are never checked
    - Paths starting with an ``exempt_paths`` prefix are public,
      non-session endpoints and are skipped
    - The token travels in the X-CSRF-Token request header and is checked
      against the session's live token; any failure is a 403
    """

    def __init__(
        self,
        store: CSRFTokenStore,
        *,
        exempt_paths: Iterable[str] = (),
        header_name: str = DEFAULT_HEADER_NAME,
    ) -> None:
        self.store = store
        self.exempt_paths = tuple(exempt_paths)
        self.header_name = header_name.lower()

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if request.method.upper() in SAFE_METHODS:
            return None

        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.exempt_paths):
            return None

        token = request.headers.get(self.header_name, "")
        if not token:
            reason = "missing_token"
        elif not context.session_id:
            reason = "missing_session"
        elif not self.store.verify(context.session_id, token):
            reason = "token_mismatch_or_expired"
        else:
            return None

        logger.warning(
            "csrf_validation_failed",
            reason=reason,
            method=request.method,
            path=path,
            security_event=True,
        )
        return CSRFValidationFailed().to_response()
