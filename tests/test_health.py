"""Health endpoint tests."""

from __future__ import annotations

from fastapi.testclient import TestClient

from reqguard.main import create_app


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "healthy",
        "pipeline": "up",
        "rate_limit_clients": 0,
        "csrf_sessions": 0,
    }


def test_health_counts_store_entries(client):
    client.get("/api/csrf-token", headers={"Cookie": "session_id=sess-1"})

    body = client.get("/health").json()
    assert body["csrf_sessions"] == 1
    assert body["rate_limit_clients"] == 1


def test_liveness(client):
    resp = client.get("/health/live")
    assert resp.status_code == 200
    assert resp.json() == {"status": "alive"}


def test_readiness(client):
    resp = client.get("/health/ready")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ready"}


def test_readiness_before_startup(guard_settings):
    """Without the lifespan having run there is no pipeline yet."""
    app = create_app(settings=guard_settings())
    resp = TestClient(app).get("/health/ready")
    assert resp.status_code == 503
    assert resp.json() == {"status": "not_ready", "pipeline": "down"}
