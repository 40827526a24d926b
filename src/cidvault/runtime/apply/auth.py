# src/cidvault/runtime/apply/auth.py
from __future__ import annotations

"""
Authorization gate + administrative surface.

Tx types:
- AUTH_CALLER_ADD     (admin only)  payload: {"caller": str}
- AUTH_CALLER_REMOVE  (admin only)  payload: {"caller": str}
- ADMIN_TRANSFER      (admin only)  payload: {"new_admin": str}

Gate semantics:
- is_authorized(caller): caller is the administrator OR in auth.callers
- is_admin(caller): caller is the administrator (strictly narrower)

State shape:
state["auth"] = {"admin": str, "callers": [str, ...]}   # callers sorted unique
"""

from typing import Any, Dict, List, Optional, Set

from cidvault.runtime.errors import INVALID_PAYLOAD, UNAUTHORIZED, ApplyError
from cidvault.runtime.events import (
    EVENT_ADMIN_TRANSFERRED,
    EVENT_CALLER_AUTHORIZED,
    EVENT_CALLER_DEAUTHORIZED,
    make_event,
)
from cidvault.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]


def _as_dict(x: Any) -> Json:
    return x if isinstance(x, dict) else {}


def _as_str(x: Any) -> str:
    return x if isinstance(x, str) else ""


def _auth(state: Json) -> Json:
    a = state.get("auth")
    if not isinstance(a, dict):
        a = {"admin": "", "callers": []}
        state["auth"] = a
    if not isinstance(a.get("callers"), list):
        a["callers"] = []
    return a


def _sorted_unique_strs(items: List[Any]) -> List[str]:
    out: List[str] = []
    for it in items:
        if isinstance(it, str) and it.strip():
            out.append(it.strip())
    return sorted(set(out))


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

def admin_of(state: Json) -> str:
    return _as_str(_auth(state).get("admin")).strip()


def is_admin(state: Json, caller: str) -> bool:
    admin = admin_of(state)
    return bool(admin) and caller == admin


def is_authorized(state: Json, caller: str) -> bool:
    if not caller:
        return False
    if is_admin(state, caller):
        return True
    return caller in set(_auth(state).get("callers") or [])


def require_authorized(state: Json, env: TxEnvelope) -> None:
    if not is_authorized(state, env.signer):
        raise ApplyError(UNAUTHORIZED, "caller_not_authorized", {"tx_type": env.tx_type, "caller": env.signer})


def require_admin(state: Json, env: TxEnvelope) -> None:
    if not is_admin(state, env.signer):
        raise ApplyError(UNAUTHORIZED, "admin_only", {"tx_type": env.tx_type, "caller": env.signer})


# ---------------------------------------------------------------------------
# Appliers
# ---------------------------------------------------------------------------

def _caller_from_payload(env: TxEnvelope) -> str:
    caller = _as_str(_as_dict(env.payload).get("caller")).strip()
    if not caller:
        raise ApplyError(INVALID_PAYLOAD, "missing_caller", {"tx_type": env.tx_type})
    return caller


def _apply_auth_caller_add(state: Json, env: TxEnvelope) -> Json:
    require_admin(state, env)
    caller = _caller_from_payload(env)

    a = _auth(state)
    already = caller in set(a["callers"])
    a["callers"] = _sorted_unique_strs(list(a["callers"]) + [caller])

    return {
        "applied": "AUTH_CALLER_ADD",
        "caller": caller,
        "deduped": already,
        "event": make_event(EVENT_CALLER_AUTHORIZED, actor=env.signer, payload={"caller": caller, "changed": not already}),
    }


def _apply_auth_caller_remove(state: Json, env: TxEnvelope) -> Json:
    require_admin(state, env)
    caller = _caller_from_payload(env)

    a = _auth(state)
    present = caller in set(a["callers"])
    a["callers"] = _sorted_unique_strs([c for c in a["callers"] if c != caller])

    return {
        "applied": "AUTH_CALLER_REMOVE",
        "caller": caller,
        "deduped": not present,
        "event": make_event(EVENT_CALLER_DEAUTHORIZED, actor=env.signer, payload={"caller": caller, "changed": present}),
    }


def _apply_admin_transfer(state: Json, env: TxEnvelope) -> Json:
    require_admin(state, env)
    new_admin = _as_str(_as_dict(env.payload).get("new_admin")).strip()
    if not new_admin:
        raise ApplyError(INVALID_PAYLOAD, "missing_new_admin", {"tx_type": env.tx_type})

    a = _auth(state)
    previous = admin_of(state)
    a["admin"] = new_admin

    return {
        "applied": "ADMIN_TRANSFER",
        "previous_admin": previous,
        "admin": new_admin,
        "event": make_event(
            EVENT_ADMIN_TRANSFERRED,
            actor=env.signer,
            payload={"previous_admin": previous, "new_admin": new_admin},
        ),
    }


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

AUTH_TX_TYPES: Set[str] = {
    "AUTH_CALLER_ADD",
    "AUTH_CALLER_REMOVE",
    "ADMIN_TRANSFER",
}


def apply_auth(state: Json, env: TxEnvelope) -> Optional[Json]:
    """Apply authorization-set txs. Returns meta dict if handled; otherwise None."""
    t = str(env.tx_type or "").strip()
    if t not in AUTH_TX_TYPES:
        return None

    if t == "AUTH_CALLER_ADD":
        return _apply_auth_caller_add(state, env)
    if t == "AUTH_CALLER_REMOVE":
        return _apply_auth_caller_remove(state, env)
    if t == "ADMIN_TRANSFER":
        return _apply_admin_transfer(state, env)

    return None
