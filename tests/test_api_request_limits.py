from __future__ import annotations

from fastapi.testclient import TestClient

from cidvault.api.app import create_app


def test_request_size_limit_returns_413(monkeypatch):
    monkeypatch.setenv("CIDVAULT_MAX_REQUEST_BYTES", "128")
    monkeypatch.delenv("CIDVAULT_SIZE_LIMIT_DISABLE", raising=False)

    app = create_app(boot_runtime=False)
    c = TestClient(app)

    payload = {"content_ref": "Qm" + "x" * 500, "payment": 1000}
    r = c.post("/v1/messages", json=payload, headers={"X-Caller-Id": "alice"})
    assert r.status_code == 413

    j = r.json()
    assert j.get("ok") is False
    assert j["error"]["code"] == "request_too_large"
    assert j["error"]["details"]["max_bytes"] == 128


def test_size_limit_can_be_disabled(monkeypatch):
    monkeypatch.setenv("CIDVAULT_MAX_REQUEST_BYTES", "128")
    monkeypatch.setenv("CIDVAULT_SIZE_LIMIT_DISABLE", "1")

    app = create_app(boot_runtime=False)
    r = TestClient(app).post("/v1/messages", json={"content_ref": "x" * 500}, headers={"X-Caller-Id": "alice"})
    # Passes the limiter and reaches the route, which has no executor attached.
    assert r.status_code == 500
    assert r.json()["error"]["code"] == "not_ready"
