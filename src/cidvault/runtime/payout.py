# src/cidvault/runtime/payout.py
from __future__ import annotations

"""Fee payout collaborators.

The registry never settles payments itself; FEES_WITHDRAW hands the captured
balance to a PayoutChannel. A channel returns True when the payout was
delivered. Returning False or raising makes the withdrawal fail with
transfer_failed and nothing is committed.
"""

import http.client
import json
import os
import urllib.parse
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol


class PayoutChannel(Protocol):
    def send(self, *, to: str, amount: int) -> bool: ...


@dataclass
class RecordingPayoutChannel:
    """In-memory channel for dev/testnet and tests.

    on_send (optional) runs before the payout is recorded; tests use it to
    simulate failures or to attempt re-entrant calls.
    """

    payouts: List[Dict[str, object]] = field(default_factory=list)
    fail: bool = False
    on_send: Optional[Callable[[str, int], None]] = None

    def send(self, *, to: str, amount: int) -> bool:
        if self.on_send is not None:
            self.on_send(to, amount)
        if self.fail:
            return False
        self.payouts.append({"to": to, "amount": int(amount)})
        return True

    @property
    def total_paid(self) -> int:
        return sum(int(p["amount"]) for p in self.payouts)


@dataclass(frozen=True)
class HttpPayoutChannel:
    """POSTs {"registry_id", "to", "amount"} as JSON to a settlement endpoint.

    Success iff the endpoint answers 2xx.
    """

    url: str
    registry_id: str = ""
    timeout_s: float = 20.0

    def send(self, *, to: str, amount: int) -> bool:
        u = urllib.parse.urlparse(self.url)
        scheme = (u.scheme or "http").lower()
        host = u.hostname or "127.0.0.1"
        port = int(u.port or (443 if scheme == "https" else 80))
        path = u.path or "/"
        if u.query:
            path = f"{path}?{u.query}"

        conn: http.client.HTTPConnection
        if scheme == "https":
            conn = http.client.HTTPSConnection(host, port, timeout=self.timeout_s)
        else:
            conn = http.client.HTTPConnection(host, port, timeout=self.timeout_s)

        body = json.dumps(
            {"registry_id": self.registry_id, "to": to, "amount": int(amount)},
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")

        try:
            conn.request("POST", path, body=body, headers={"Content-Type": "application/json"})
            resp = conn.getresponse()
            resp.read()
            return 200 <= resp.status < 300
        finally:
            conn.close()


def payout_channel_from_env(*, registry_id: str = "") -> PayoutChannel:
    """CIDVAULT_PAYOUT_URL set -> HttpPayoutChannel, otherwise an in-memory channel."""
    url = (os.getenv("CIDVAULT_PAYOUT_URL") or "").strip()
    if url:
        timeout_ms = int((os.getenv("CIDVAULT_PAYOUT_TIMEOUT_MS") or "20000").strip() or "20000")
        return HttpPayoutChannel(url=url, registry_id=registry_id, timeout_s=timeout_ms / 1000.0)
    return RecordingPayoutChannel()
