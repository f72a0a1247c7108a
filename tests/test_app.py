"""End-to-end tests: the security pipeline in front of real routes."""

from __future__ import annotations

import re

from fastapi.testclient import TestClient

from reqguard.config.rate_limit_defaults import RateLimitRule
from reqguard.main import create_app
from reqguard.store.csrf_tokens import CSRFTokenStore
from reqguard.store.rate_window import RateWindowStore

SESSION = {"Cookie": "session_id=sess-1"}


def _csrf_headers(client: TestClient) -> dict[str, str]:
    resp = client.get("/api/csrf-token", headers=SESSION)
    assert resp.status_code == 200
    return {**SESSION, "X-CSRF-Token": resp.json()["csrfToken"]}


def _one_rule(max_requests: int) -> list[RateLimitRule]:
    return [RateLimitRule(name="api", path_prefix="/api/", window_ms=60_000, max_requests=max_requests)]


# --- CSRF ---


def test_csrf_token_issued_for_session(client):
    resp = client.get("/api/csrf-token", headers=SESSION)
    assert resp.status_code == 200
    assert re.fullmatch(r"[0-9a-f]{64}", resp.json()["csrfToken"])


def test_csrf_token_requires_session(client):
    resp = client.get("/api/csrf-token")
    assert resp.status_code == 401
    assert resp.json() == {"message": "A session is required for this operation", "code": "SESSION_REQUIRED"}


def test_post_without_token_rejected(client):
    resp = client.post("/api/posts", json={"content": "hi"}, headers=SESSION)
    assert resp.status_code == 403
    assert resp.json() == {"message": "Invalid CSRF token", "code": "CSRF_VALIDATION_FAILED"}


def test_reissued_token_invalidates_previous(client):
    old = _csrf_headers(client)
    _csrf_headers(client)
    resp = client.post("/api/posts", json={"content": "hi"}, headers=old)
    assert resp.status_code == 403


def test_exempt_path_needs_no_token(client):
    resp = client.post("/api/web3/connect", json={"address": "0xabc"})
    assert resp.status_code == 200


def test_csrf_can_be_disabled(make_client):
    client = make_client(csrf_enabled=False)
    resp = client.post("/api/posts", json={"content": "hi"})
    assert resp.status_code == 200


# --- Body sanitization ---


def test_sanitized_body_reaches_route(client):
    resp = client.post("/api/posts", json={"content": "<b>hi</b>", "likes": 2}, headers=_csrf_headers(client))
    assert resp.status_code == 200
    assert resp.json() == {"received": {"content": "&lt;b&gt;hi&lt;&#x2F;b&gt;", "likes": 2}}


def test_unmodified_body_replayed(client):
    headers = {**_csrf_headers(client), "Content-Type": "text/plain"}
    resp = client.post("/api/raw", content=b"<plain text>", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"body": "<plain text>"}


def test_oversized_body_rejected(make_client):
    client = make_client(max_body_bytes=50)
    resp = client.post("/api/posts", json={"content": "x" * 100}, headers=_csrf_headers(client))
    assert resp.status_code == 413
    assert resp.json()["code"] == "PAYLOAD_TOO_LARGE"


def test_deeply_nested_json_reaches_route(client):
    body = "[" * 3000 + "]" * 3000
    resp = client.post("/api/web3/connect", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 200
    assert resp.json() == {"connected": True}


# --- Rate limiting ---


def test_rate_limit_enforced(make_client):
    client = make_client(rate_limit_rules=_one_rule(2))

    for _ in range(2):
        resp = client.get("/api/objects/avatar/a.png")
        assert resp.status_code == 200
        assert resp.headers["x-ratelimit-limit"] == "2"

    resp = client.get("/api/objects/avatar/a.png")
    assert resp.status_code == 429
    body = resp.json()
    assert body["message"] == "Too many requests"
    assert 1 <= body["retryAfter"] <= 60
    assert resp.headers["retry-after"] == str(body["retryAfter"])
    assert resp.headers["x-ratelimit-remaining"] == "0"
    assert "x-request-id" in resp.headers


def test_skip_paths_not_limited(make_client):
    client = make_client(rate_limit_rules=_one_rule(1), rate_limit_skip_paths=["/api/objects/avatar/"])
    for _ in range(5):
        assert client.get("/api/objects/avatar/a.png").status_code == 200


def test_health_not_limited(make_client):
    client = make_client(rate_limit_rules=_one_rule(1))
    for _ in range(5):
        assert client.get("/health").status_code == 200


def test_rotating_forwarded_for_does_not_reset_window(make_client):
    client = make_client(rate_limit_rules=_one_rule(2))
    statuses = [
        client.get("/api/csrf-token", headers={"X-Forwarded-For": f"10.9.9.{i}"}).status_code
        for i in range(6)
    ]
    assert statuses == [401, 401, 429, 429, 429, 429]


def test_behind_proxy_only_appended_hop_counts(make_client):
    client = make_client(rate_limit_rules=_one_rule(2), trust_proxy=True)
    statuses = [
        client.get("/api/csrf-token", headers={"X-Forwarded-For": f"10.9.9.{i}, 198.51.100.7"}).status_code
        for i in range(4)
    ]
    assert statuses == [401, 401, 429, 429]
    other = client.get("/api/csrf-token", headers={"X-Forwarded-For": "198.51.100.8"})
    assert other.status_code == 401


# --- Transport security ---


def test_plain_http_redirected_when_enforced(make_client):
    client = make_client(https_enforcement_enabled=True)
    resp = client.get("/api/csrf-token", follow_redirects=False)
    assert resp.status_code == 301
    assert resp.headers["location"] == "https://testserver/api/csrf-token"


def test_health_not_redirected(make_client):
    client = make_client(https_enforcement_enabled=True)
    assert client.get("/health", follow_redirects=False).status_code == 200


def test_hsts_on_forwarded_https(make_client):
    client = make_client(https_enforcement_enabled=True, trust_proxy=True)
    resp = client.get("/api/csrf-token", headers={**SESSION, "X-Forwarded-Proto": "https"})
    assert resp.status_code == 200
    assert resp.headers["strict-transport-security"] == "max-age=31536000; includeSubDomains"


# --- Path traversal ---


def test_avatar_path_resolved(client, tmp_path):
    resp = client.get("/api/objects/avatar/a.png")
    assert resp.status_code == 200
    assert resp.json() == {"path": str((tmp_path / "a.png").resolve())}


def test_traversal_rejected_before_route(client):
    resp = client.get("/api/objects/avatar/..%2F..%2Fetc%2Fpasswd")
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid file path", "code": "PATH_TRAVERSAL_DETECTED"}


# --- Outbound URLs ---


def test_ssrf_blocked_in_route(client):
    resp = client.get("/api/fetch", params={"url": "http://169.254.169.254/latest/meta-data/"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "URL is not allowed for security reasons", "code": "SSRF_BLOCKED"}


def test_allowlisted_url_accepted(client):
    resp = client.get("/api/fetch", params={"url": "https://gateway.pinata.cloud/ipfs/QmHash"})
    assert resp.status_code == 200
    assert resp.json() == {"url": "https://gateway.pinata.cloud/ipfs/QmHash"}


# --- Context ---


def test_request_id_headers(client):
    resp = client.get("/health", headers={"X-Request-ID": "client-123"})
    assert re.fullmatch(r"[0-9a-f]{8}", resp.headers["x-request-id"])
    assert resp.headers["x-original-request-id"] == "client-123"


class _BrokenRateStore(RateWindowStore):
    def check(self, *args, **kwargs):
        raise RuntimeError("store unavailable")


def test_pipeline_failure_rejects_request(guard_settings):
    app = create_app(
        settings=guard_settings(),
        rate_store=_BrokenRateStore(),
        csrf_store=CSRFTokenStore(),
    )
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.get("/api/objects/avatar/a.png")
    assert resp.status_code == 500
    assert resp.json() == {"message": "Internal error", "code": "SECURITY_PIPELINE_ERROR"}


# --- Config reload ---


def test_reload_rebuilds_pipeline_and_keeps_stores(make_client, guard_settings, monkeypatch):
    callbacks = []
    monkeypatch.setattr("reqguard.main.register_reload_handler", callbacks.append)
    client = make_client(rate_limit_rules=_one_rule(5))
    app = client.app
    rate_store = app.state.rate_store
    client.get("/api/objects/avatar/a.png")

    assert client.post("/api/posts", json={"content": "hi"}).status_code == 403

    (on_reload,) = callbacks
    on_reload(guard_settings(csrf_enabled=False, rate_limit_rules=_one_rule(5)))

    assert client.post("/api/posts", json={"content": "hi"}).status_code == 200
    assert app.state.rate_store is rate_store
    assert app.state.settings.csrf_enabled is False
    resp = client.get("/api/objects/avatar/a.png")
    # Counts from before the rebuild still apply: 4 of 5 used.
    assert resp.headers["x-ratelimit-remaining"] == "1"
