"""Security error wire format tests."""

from __future__ import annotations

import json

import pytest

from reqguard.errors import (
    CSRFValidationFailed,
    MalformedRequest,
    PathTraversalDetected,
    PayloadTooLarge,
    PipelineFailure,
    RateLimitExceeded,
    SecurityError,
    SessionRequired,
    SSRFBlocked,
)


@pytest.mark.parametrize(
    "error_cls, status, code",
    [
        (SecurityError, 400, "SECURITY_VIOLATION"),
        (CSRFValidationFailed, 403, "CSRF_VALIDATION_FAILED"),
        (PathTraversalDetected, 400, "PATH_TRAVERSAL_DETECTED"),
        (SSRFBlocked, 400, "SSRF_BLOCKED"),
        (PayloadTooLarge, 413, "PAYLOAD_TOO_LARGE"),
        (SessionRequired, 401, "SESSION_REQUIRED"),
        (PipelineFailure, 500, "SECURITY_PIPELINE_ERROR"),
        (MalformedRequest, 400, "MALFORMED_REQUEST"),
    ],
)
def test_status_and_code(error_cls, status, code):
    response = error_cls().to_response()
    assert response.status_code == status
    body = json.loads(response.body)
    assert body["code"] == code
    assert set(body) == {"message", "code"}


def test_detail_never_sent_to_client():
    error = PathTraversalDetected(detail="/etc/passwd escaped /srv/uploads")
    body = json.loads(error.to_response().body)
    assert "passwd" not in json.dumps(body)
    assert str(error) == "/etc/passwd escaped /srv/uploads"


def test_message_override():
    error = SecurityError("Nope")
    assert error.body() == {"message": "Nope", "code": "SECURITY_VIOLATION"}
    assert SecurityError().message == "Request rejected"


def test_rate_limit_body_and_headers():
    response = RateLimitExceeded(7, limit=3).to_response()
    assert response.status_code == 429
    assert json.loads(response.body) == {"message": "Too many requests", "retryAfter": 7}
    assert response.headers["retry-after"] == "7"
    assert response.headers["x-ratelimit-limit"] == "3"
    assert response.headers["x-ratelimit-remaining"] == "0"


def test_rate_limit_without_limit_header():
    response = RateLimitExceeded(5).to_response()
    assert response.headers["retry-after"] == "5"
    assert "x-ratelimit-limit" not in response.headers


def test_security_event_flags():
    assert CSRFValidationFailed.security_event
    assert SSRFBlocked.security_event
    assert not RateLimitExceeded.security_event
    assert not PayloadTooLarge.security_event
