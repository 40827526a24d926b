# src/cidvault/runtime/apply/fees.py
from __future__ import annotations

"""
Fee custody.

Every successful MESSAGE_STORE credits its full payment to the registry's
balance. FEES_WITHDRAW (admin only) captures the whole balance and zeroes it on
the working snapshot; the executor performs the external payout and commits the
snapshot only if the payout succeeded.

State shape:
state["fees"] = {"balance": int, "total_collected": int, "total_withdrawn": int}
"""

from typing import Any, Dict, Optional, Set

from cidvault.runtime.apply.auth import admin_of, require_admin
from cidvault.runtime.errors import NO_BALANCE, ApplyError
from cidvault.runtime.events import EVENT_FEES_WITHDRAWN, make_event
from cidvault.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _fees(state: Json) -> Json:
    f = state.get("fees")
    if not isinstance(f, dict):
        f = {}
        state["fees"] = f
    for key in ("balance", "total_collected", "total_withdrawn"):
        f[key] = _as_int(f.get(key), 0)
    return f


def fee_balance(state: Json) -> int:
    return _fees(state)["balance"]


def credit_fee(state: Json, amount: int) -> int:
    f = _fees(state)
    amt = max(0, int(amount))
    f["balance"] += amt
    f["total_collected"] += amt
    return f["balance"]


def _apply_fees_withdraw(state: Json, env: TxEnvelope) -> Json:
    require_admin(state, env)

    f = _fees(state)
    amount = f["balance"]
    if amount <= 0:
        raise ApplyError(NO_BALANCE, "nothing_to_withdraw", {"balance": amount})

    f["balance"] = 0
    f["total_withdrawn"] += amount
    to = admin_of(state)

    return {
        "applied": "FEES_WITHDRAW",
        "to": to,
        "amount": amount,
        "event": make_event(EVENT_FEES_WITHDRAWN, actor=env.signer, payload={"to": to, "amount": amount}),
    }


FEES_TX_TYPES: Set[str] = {"FEES_WITHDRAW"}


def apply_fees(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip()
    if t not in FEES_TX_TYPES:
        return None
    return _apply_fees_withdraw(state, env)
