"""Request sanitizer middleware: escapes HTML-significant characters in request bodies."""

from __future__ import annotations

import json
from urllib.parse import parse_qsl, urlencode

import structlog
from starlette.requests import Request
from starlette.responses import Response

from reqguard.errors import MalformedRequest, PayloadTooLarge
from reqguard.middleware.pipeline import Middleware, RequestContext
from reqguard.security.input_sanitizer import sanitize_object, sanitize_text

logger = structlog.get_logger()

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def _media_type(request: Request) -> str:
    return request.headers.get("content-type", "").split(";", 1)[0].strip().lower()


def _is_json(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


class RequestSanitizer(Middleware):
    """Apply the escaping sanitizer to JSON and form-encoded bodies.

    The rewritten body is stored in ``context.extra["modified_body"]`` and
    replayed to the application in place of the original. Bodies that
    cannot be decoded pass through unchanged; rejecting malformed input is
    the application's job.
    """

    def __init__(self, *, max_body_bytes: int = 10 * 1024 * 1024) -> None:
        self.max_body_bytes = max_body_bytes

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if request.method.upper() not in _BODY_METHODS:
            return None

        content_length = request.headers.get("content-length")
        if content_length:
            try:
                declared = int(content_length)
            except ValueError:
                return MalformedRequest("Invalid Content-Length").to_response()
            if declared > self.max_body_bytes:
                return self._too_large(declared)

        # Chunked bodies carry no length; stop reading as soon as the limit is passed.
        chunks: list[bytes] = []
        received = 0
        async for chunk in request.stream():
            received += len(chunk)
            if received > self.max_body_bytes:
                return self._too_large(received)
            chunks.append(chunk)
        body = b"".join(chunks)
        context.extra["raw_body"] = body
        if not body:
            return None

        media_type = _media_type(request)
        if _is_json(media_type):
            self._sanitize_json(body, context)
        elif media_type == _FORM_CONTENT_TYPE:
            self._sanitize_form(body, context)
        return None

    def _sanitize_json(self, body: bytes, context: RequestContext) -> None:
        try:
            data = json.loads(body)
            clean = sanitize_object(data)
            changed = clean != data
        except (ValueError, RecursionError):
            logger.debug("request_sanitizer_unparseable_json", body_size=len(body))
            return
        if changed:
            context.extra["modified_body"] = json.dumps(clean, ensure_ascii=False).encode("utf-8")
            logger.debug("request_body_sanitized", media_type="json")

    def _sanitize_form(self, body: bytes, context: RequestContext) -> None:
        try:
            pairs = parse_qsl(body.decode("utf-8"), keep_blank_values=True)
        except UnicodeDecodeError:
            logger.debug("request_sanitizer_undecodable_form", body_size=len(body))
            return
        clean = [(key, sanitize_text(value)) for key, value in pairs]
        if clean != pairs:
            context.extra["modified_body"] = urlencode(clean).encode("ascii")
            logger.debug("request_body_sanitized", media_type="form")

    def _too_large(self, size: int) -> Response:
        logger.warning("request_body_too_large", size=size, max=self.max_body_bytes)
        return PayloadTooLarge().to_response()
