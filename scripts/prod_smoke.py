#!/usr/bin/env python3

"""Production-ish smoke test for the cidvault registry.

It verifies:
  - executor boots on a fresh SQLite db from CIDVAULT_* env
  - FastAPI app boots and serves /v1/health + /v1/status
  - store -> retrieve -> delete -> re-store behaves end to end over HTTP

Usage:
  python3 scripts/prod_smoke.py
"""

from __future__ import annotations

import os
import tempfile

from fastapi.testclient import TestClient

from cidvault.api.app import create_production_app


def main() -> int:
    with tempfile.TemporaryDirectory(prefix="cidvault-smoke-") as td:
        os.environ["CIDVAULT_DB_PATH"] = os.path.join(td, "cidvault.db")
        os.environ.setdefault("CIDVAULT_REGISTRY_ID", "smoke-registry")
        os.environ.setdefault("CIDVAULT_ADMIN", "smoke-admin")
        os.environ.setdefault("CIDVAULT_AUTHORIZED_CALLERS", "smoke-gateway")
        os.environ.pop("CIDVAULT_PAYOUT_URL", None)

        admin = os.environ["CIDVAULT_ADMIN"]
        c = TestClient(create_production_app())

        r = c.get("/v1/health")
        assert r.status_code == 200, r.text
        status = c.get("/v1/status").json()
        assert status["admin"] == admin, status

        fee = int(os.environ.get("CIDVAULT_MIN_FEE") or 1000)
        caller = {"X-Caller-Id": admin}
        r = c.post("/v1/messages", json={"content_ref": "QmSmoke", "message_type": "text", "payment": fee}, headers=caller)
        assert r.status_code == 200, r.text
        mid = int(r.json()["message_id"])

        r = c.get(f"/v1/messages/{mid}/content", headers=caller)
        assert r.json().get("content_ref") == "QmSmoke", r.text

        assert c.delete(f"/v1/messages/{mid}", headers=caller).status_code == 200
        assert c.get(f"/v1/messages/{mid}/content", headers=caller).status_code == 410
        r = c.post("/v1/messages", json={"content_ref": "QmSmoke", "payment": fee}, headers=caller)
        assert r.status_code == 409, r.text

        r = c.post("/v1/admin/withdraw", headers=caller)
        assert r.json().get("amount") == fee, r.text

        events = c.get("/v1/events").json()["items"]
        print("OK: health/status + message lifecycle", {"message_id": mid, "events": len(events)})
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
