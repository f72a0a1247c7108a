"""Context injector middleware: request id, client identifier and session identifier."""

from __future__ import annotations

from uuid import uuid4

import structlog
from starlette.requests import Request
from starlette.responses import Response

from reqguard.middleware.pipeline import Middleware, RequestContext
from reqguard.security.log_sanitizer import strip_control_chars

logger = structlog.get_logger()

_MAX_REQUEST_ID_LENGTH = 256
_MAX_CLIENT_ID_LENGTH = 64
_MAX_SESSION_ID_LENGTH = 256


def _clean(value: str, limit: int) -> str:
    # Stored values end up in log lines and response headers.
    return strip_control_chars(value)[:limit]


class ContextInjector(Middleware):
    """Fill in the request context before any check runs.

    The request id is always generated here; a client-supplied X-Request-ID
    is kept only as ``original_request_id`` and echoed back separately. The
    client identifier is what the rate limiter counts against: the last
    X-Forwarded-For hop (the one the trusted proxy appended) when
    ``trust_proxy`` is set, otherwise the peer address. Earlier hops are
    written by the client and never used.
    """

    def __init__(self, *, trust_proxy: bool = False, session_cookie_name: str = "session_id") -> None:
        self.trust_proxy = trust_proxy
        self.session_cookie_name = session_cookie_name

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        context.request_id = uuid4().hex[:8]
        context.client_id = self._client_id(request) or "unknown"
        context.session_id = self._session_id(request)

        supplied = request.headers.get("x-request-id")
        if supplied:
            context.extra["original_request_id"] = _clean(supplied, _MAX_REQUEST_ID_LENGTH)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=context.request_id, client_id=context.client_id)
        logger.debug("context_injected", has_session=bool(context.session_id))
        return None

    def _client_id(self, request: Request) -> str:
        if self.trust_proxy:
            last_hop = request.headers.get("x-forwarded-for", "").rpartition(",")[2].strip()
            if last_hop:
                return _clean(last_hop, _MAX_CLIENT_ID_LENGTH)
        peer = request.client.host if request.client else ""
        return _clean(peer, _MAX_CLIENT_ID_LENGTH)

    def _session_id(self, request: Request) -> str:
        cookie = request.cookies.get(self.session_cookie_name, "")
        return cookie if len(cookie) <= _MAX_SESSION_ID_LENGTH else ""

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        response.headers["x-request-id"] = context.request_id
        original = context.extra.get("original_request_id")
        if original:
            response.headers["x-original-request-id"] = original
        return response
