from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Iterator, List

import pytest

from cidvault.runtime.payout import HttpPayoutChannel, RecordingPayoutChannel, payout_channel_from_env


@pytest.fixture
def settlement() -> Iterator[dict]:
    """Local settlement endpoint; answers with ctx["status"] and records request bodies."""
    ctx: dict = {"status": 200, "bodies": []}
    bodies: List[dict] = ctx["bodies"]

    class _Handler(BaseHTTPRequestHandler):
        def do_POST(self) -> None:  # noqa: N802
            n = int(self.headers.get("content-length") or 0)
            bodies.append(json.loads(self.rfile.read(n).decode("utf-8")))
            self.send_response(int(ctx["status"]))
            self.end_headers()

        def log_message(self, *args) -> None:
            pass

    srv = HTTPServer(("127.0.0.1", 0), _Handler)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    ctx["url"] = f"http://127.0.0.1:{srv.server_address[1]}/settle"
    try:
        yield ctx
    finally:
        srv.shutdown()
        srv.server_close()


def test_http_payout_success(settlement: dict) -> None:
    ch = HttpPayoutChannel(url=settlement["url"], registry_id="r1", timeout_s=5)
    assert ch.send(to="admin", amount=1234) is True
    assert settlement["bodies"] == [{"registry_id": "r1", "to": "admin", "amount": 1234}]


def test_http_payout_non_2xx_is_failure(settlement: dict) -> None:
    settlement["status"] = 503
    ch = HttpPayoutChannel(url=settlement["url"], registry_id="r1", timeout_s=5)
    assert ch.send(to="admin", amount=1) is False


def test_withdraw_through_http_channel(tmp_path, settlement: dict) -> None:
    from cidvault.runtime.errors import ApplyError
    from cidvault.runtime.registry import RegistryExecutor

    ex = RegistryExecutor(
        db_path=str(tmp_path / "r.db"),
        registry_id="r1",
        admin="admin",
        payout=HttpPayoutChannel(url=settlement["url"], registry_id="r1", timeout_s=5),
    )
    ex.store("admin", "QmPaid", payment=2_000)

    settlement["status"] = 500
    with pytest.raises(ApplyError) as ei:
        ex.withdraw("admin")
    assert ei.value.code == "transfer_failed"
    assert ex.fee_balance() == 2_000

    settlement["status"] = 204
    assert ex.withdraw("admin") == 2_000
    assert ex.fee_balance() == 0


def test_unreachable_endpoint_raises() -> None:
    ch = HttpPayoutChannel(url="http://127.0.0.1:9/settle", timeout_s=0.5)
    with pytest.raises(OSError):
        ch.send(to="admin", amount=1)


def test_channel_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CIDVAULT_PAYOUT_URL", raising=False)
    assert isinstance(payout_channel_from_env(), RecordingPayoutChannel)

    monkeypatch.setenv("CIDVAULT_PAYOUT_URL", "https://settle.example/payout")
    ch = payout_channel_from_env(registry_id="r9")
    assert isinstance(ch, HttpPayoutChannel)
    assert ch.registry_id == "r9"
    assert ch.timeout_s == 20.0
