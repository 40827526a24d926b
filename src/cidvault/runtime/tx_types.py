from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class TxEnvelope:
    """One registry operation.

    signer is the already-authenticated caller identity; value is the payment
    that accompanied the call (only MESSAGE_STORE looks at it); ts_ms is stamped
    by the executor so apply stays deterministic for a given envelope.
    """

    tx_type: str
    signer: str
    payload: Dict[str, Any]
    value: int = 0
    ts_ms: int = 0

    @staticmethod
    def from_json(j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        return TxEnvelope(
            tx_type=str(j.get("tx_type", "")),
            signer=str(j.get("signer", "") or ""),
            payload=dict(j.get("payload", {}) or {}),
            value=int(j.get("value", 0) or 0),
            ts_ms=int(j.get("ts_ms", 0) or 0),
        )

