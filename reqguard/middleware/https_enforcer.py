"""Transport security: HTTPS redirects, HSTS, and an advisory plain-HTTP monitor."""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import quote

import structlog
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from reqguard.errors import MalformedRequest
from reqguard.middleware.pipeline import Middleware, RequestContext

logger = structlog.get_logger()

HSTS_HEADER_VALUE = "max-age=31536000; includeSubDomains"

DEFAULT_EXCLUDED_PATHS = ("/health", "/health/live", "/health/ready")


def is_secure(request: Request, trust_proxy: bool = False) -> bool:
    """Return True if the request arrived over TLS.

    With ``trust_proxy`` the first X-Forwarded-Proto value set by a
    fronting proxy is honoured as well.
    """
    if request.url.scheme == "https":
        return True
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-proto", "")
        return forwarded.split(",", 1)[0].strip().lower() == "https"
    return False


class HTTPSEnforcer(Middleware):
    """Redirect plain-HTTP requests to HTTPS and send HSTS on secure ones.

    Exact-match excluded paths (health checks) are never redirected.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        trust_proxy: bool = False,
        exclude_paths: Iterable[str] = DEFAULT_EXCLUDED_PATHS,
    ) -> None:
        self.enabled = enabled
        self.trust_proxy = trust_proxy
        self.exclude_paths = frozenset(exclude_paths)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if not self.enabled:
            return None

        path = request.url.path
        if path in self.exclude_paths:
            return None

        if not is_secure(request, self.trust_proxy):
            host = request.url.hostname
            if not host:
                logger.info("https_redirect_without_host", path=path)
                return MalformedRequest("Missing Host header").to_response()
            # Re-encode: the ASGI path is already percent-decoded.
            target = f"https://{host}{quote(path)}"
            if request.url.query:
                target = f"{target}?{request.url.query}"
            logger.info("https_redirect", path=path)
            return RedirectResponse(target, status_code=301)

        context.extra["transport_secure"] = True
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        if context.extra.get("transport_secure"):
            response.headers["strict-transport-security"] = HSTS_HEADER_VALUE
        return response


class InsecureTransportMonitor(Middleware):
    """Warn (never block) when a sensitive endpoint is reached over plain HTTP.

    Meant for development visibility; production deployments rely on
    ``HTTPSEnforcer``.
    """

    def __init__(self, sensitive_paths: Iterable[str] = (), *, trust_proxy: bool = False) -> None:
        self.sensitive_paths = tuple(sensitive_paths)
        self.trust_proxy = trust_proxy

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        path = request.url.path
        if not any(path.startswith(prefix) for prefix in self.sensitive_paths):
            return None
        if not is_secure(request, self.trust_proxy):
            logger.warning(
                "insecure_sensitive_endpoint",
                path=path,
                method=request.method,
                hint="sensitive endpoint accessed over HTTP; expected only in development",
            )
        return None
