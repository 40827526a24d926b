# src/cidvault/runtime/supported_txs.py
"""Tx types this build routes through apply_tx().

READ_ONLY_TX_TYPES run through the same gate/check path as mutations (so
their rejections and events are uniform) but the executor never persists
their working state.
"""

from __future__ import annotations

from typing import AbstractSet

from cidvault.runtime.apply.auth import AUTH_TX_TYPES
from cidvault.runtime.apply.fees import FEES_TX_TYPES
from cidvault.runtime.apply.messages import MESSAGE_TX_TYPES
from cidvault.runtime.apply.quota import QUOTA_TX_TYPES

SUPPORTED_TX_TYPES: AbstractSet[str] = frozenset(
    set(AUTH_TX_TYPES) | set(FEES_TX_TYPES) | set(MESSAGE_TX_TYPES) | set(QUOTA_TX_TYPES)
)

READ_ONLY_TX_TYPES: AbstractSet[str] = frozenset({"MESSAGE_RETRIEVE"})

# Tx types whose commit depends on an external payout succeeding.
PAYOUT_TX_TYPES: AbstractSet[str] = frozenset({"FEES_WITHDRAW"})

__all__ = ["SUPPORTED_TX_TYPES", "READ_ONLY_TX_TYPES", "PAYOUT_TX_TYPES"]
