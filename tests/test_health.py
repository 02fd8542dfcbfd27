"""Health endpoint."""
from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    j = r.json()
    assert j.get("status") == "ok"
    assert "openai_configured" in j
    assert j.get("ai_mode") == "stub"
    assert j.get("database") == "ok"


def test_request_id_header(client: TestClient):
    r = client.get("/health")
    assert r.headers.get("X-Request-ID")


def test_unknown_analysis_error_body_has_request_id(client: TestClient, auth_headers: dict):
    r = client.get("/api/analysis/does-not-exist/status", headers=auth_headers)
    assert r.status_code == 404
    j = r.json()
    assert j == {"error": "Analysis not found.", "status_code": 404, "request_id": r.headers["X-Request-ID"]}


def test_ai_health_in_stub_mode_does_not_call_openai(client: TestClient):
    r = client.get("/health/ai")
    assert r.status_code == 200
    assert r.json() == {"status": "stub", "latency_ms": 0.0, "error": None}
