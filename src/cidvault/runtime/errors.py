from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# Registry error codes. Every rejected precondition surfaces exactly one of these.
UNAUTHORIZED = "unauthorized"
NOT_FOUND = "not_found"
DELETED = "deleted"
ACCESS_DENIED = "access_denied"
NOT_SENDER = "not_sender"
ALREADY_DELETED = "already_deleted"
INSUFFICIENT_FEE = "insufficient_fee"
EMPTY_CONTENT_REF = "empty_content_ref"
DUPLICATE_CONTENT = "duplicate_content"
INVALID_QUOTA = "invalid_quota"
NO_BALANCE = "no_balance"
TRANSFER_FAILED = "transfer_failed"

# Envelope / runtime level codes.
INVALID_PAYLOAD = "invalid_payload"
INVALID_TX = "invalid_tx"
TX_UNIMPLEMENTED = "tx_unimplemented"
REENTRANT_CALL = "reentrant_call"
INVARIANT_VIOLATION = "invariant_violation"


@dataclass
class ApplyError(Exception):
    """Canonical error type for registry apply and dispatch failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"
