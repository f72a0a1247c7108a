"""Security error taxonomy and its JSON wire format."""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse


class SecurityError(Exception):
    """Base class for requests rejected by the security pipeline.

    ``message`` is what the client sees; ``detail`` is for logs only and
    never leaves the process.
    """

    status_code: int = 400
    code: str = "SECURITY_VIOLATION"
    message: str = "Request rejected"
    security_event: bool = True

    def __init__(self, message: str | None = None, *, detail: str = "") -> None:
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(detail or self.message)

    def body(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code}

    def headers(self) -> dict[str, str]:
        return {}

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.body(),
            headers=self.headers() or None,
        )


class RateLimitExceeded(SecurityError):
    """Client exceeded its sliding-window limit. Expected, not an attack signal."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests"
    security_event = False

    def __init__(self, retry_after: int, *, limit: int = 0, detail: str = "") -> None:
        super().__init__(detail=detail)
        self.retry_after = retry_after
        self.limit = limit

    def body(self) -> dict[str, Any]:
        return {"message": self.message, "retryAfter": self.retry_after}

    def headers(self) -> dict[str, str]:
        headers = {"Retry-After": str(self.retry_after)}
        if self.limit:
            headers["X-RateLimit-Limit"] = str(self.limit)
            headers["X-RateLimit-Remaining"] = "0"
        return headers


class CSRFValidationFailed(SecurityError):
    status_code = 403
    code = "CSRF_VALIDATION_FAILED"
    message = "Invalid CSRF token"


class PathTraversalDetected(SecurityError):
    status_code = 400
    code = "PATH_TRAVERSAL_DETECTED"
    message = "Invalid file path"


class SSRFBlocked(SecurityError):
    status_code = 400
    code = "SSRF_BLOCKED"
    message = "URL is not allowed for security reasons"


class PayloadTooLarge(SecurityError):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"
    message = "Request body too large"
    security_event = False


class SessionRequired(SecurityError):
    status_code = 401
    code = "SESSION_REQUIRED"
    message = "A session is required for this operation"
    security_event = False


class PipelineFailure(SecurityError):
    """A middleware raised unexpectedly; the request is rejected (fail closed)."""

    status_code = 500
    code = "SECURITY_PIPELINE_ERROR"
    message = "Internal error"
    security_event = False


class MalformedRequest(SecurityError):
    status_code = 400
    code = "MALFORMED_REQUEST"
    message = "The request was invalid or malformed"
    security_event = False
