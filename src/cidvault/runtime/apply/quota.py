# src/cidvault/runtime/apply/quota.py
from __future__ import annotations

"""
Quota ledger apply semantics.

Tx types:
- ACCOUNT_INIT       (authorized callers)  payload: {"user": str}   (defaults to signer)
- ACCOUNT_QUOTA_SET  (admin only)          payload: {"user": str, "quota": int}

State shape:
state["accounts"]["<addr>"] = {
  "used_storage": int,     # message_count * params.message_size_estimate
  "storage_quota": int,
  "message_count": int,    # live (non-deleted) messages
  "active": bool,          # false -> true once, never reset
}

Quota is advisory bookkeeping: nothing here (or in MESSAGE_STORE) rejects a
write because used_storage would exceed storage_quota.
"""

from typing import Any, Dict, Optional, Set

from cidvault.runtime.apply.auth import require_admin, require_authorized
from cidvault.runtime.errors import INVALID_PAYLOAD, INVALID_QUOTA, INVARIANT_VIOLATION, ApplyError
from cidvault.runtime.events import EVENT_ACCOUNT_INITIALIZED, EVENT_QUOTA_SET, make_event
from cidvault.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]

DEFAULT_QUOTA = 100 * 1024 * 1024
DEFAULT_MESSAGE_SIZE_ESTIMATE = 1024


def _as_dict(x: Any) -> Json:
    return x if isinstance(x, dict) else {}


def _as_str(x: Any) -> str:
    return x if isinstance(x, str) else ""


def _as_int(x: Any, default: int = 0) -> int:
    if isinstance(x, bool):
        return default
    try:
        return int(x)
    except Exception:
        return default


def _param_int(state: Json, key: str, default: int) -> int:
    v = _as_int(_as_dict(state.get("params")).get(key), 0)
    return v if v > 0 else default


def message_size_estimate(state: Json) -> int:
    return _param_int(state, "message_size_estimate", DEFAULT_MESSAGE_SIZE_ESTIMATE)


def default_quota(state: Json) -> int:
    return _param_int(state, "default_quota", DEFAULT_QUOTA)


def ensure_account(state: Json, addr: str) -> Json:
    accounts = state.get("accounts")
    if not isinstance(accounts, dict):
        accounts = {}
        state["accounts"] = accounts
    rec = accounts.get(addr)
    if not isinstance(rec, dict):
        rec = {"used_storage": 0, "storage_quota": 0, "message_count": 0, "active": False}
        accounts[addr] = rec
    return rec


def charge_message(state: Json, addr: str) -> Json:
    """Account one more live message against addr."""
    rec = ensure_account(state, addr)
    rec["message_count"] = _as_int(rec.get("message_count"), 0) + 1
    rec["used_storage"] = _as_int(rec.get("used_storage"), 0) + message_size_estimate(state)
    return rec


def release_message(state: Json, addr: str) -> Json:
    """Undo charge_message() for a message being deleted.

    A message is charged once and deleted once, so usage can never go
    negative; if it would, the ledger is corrupt and the op is rejected.
    """
    rec = ensure_account(state, addr)
    est = message_size_estimate(state)
    count = _as_int(rec.get("message_count"), 0)
    used = _as_int(rec.get("used_storage"), 0)
    if count < 1 or used < est:
        raise ApplyError(
            INVARIANT_VIOLATION,
            "storage_underflow",
            {"account": addr, "message_count": count, "used_storage": used, "estimate": est},
        )
    rec["message_count"] = count - 1
    rec["used_storage"] = used - est
    return rec


# ---------------------------------------------------------------------------
# ACCOUNT_INIT
# ---------------------------------------------------------------------------

def _apply_account_init(state: Json, env: TxEnvelope) -> Json:
    require_authorized(state, env)
    user = _as_str(_as_dict(env.payload).get("user")).strip() or env.signer

    rec = ensure_account(state, user)
    changed = not bool(rec.get("active", False))
    if changed:
        rec["storage_quota"] = default_quota(state)
        rec["active"] = True

    return {
        "applied": "ACCOUNT_INIT",
        "user": user,
        "deduped": not changed,
        "event": make_event(
            EVENT_ACCOUNT_INITIALIZED,
            actor=env.signer,
            payload={"user": user, "storage_quota": _as_int(rec.get("storage_quota"), 0), "changed": changed},
        ),
    }


# ---------------------------------------------------------------------------
# ACCOUNT_QUOTA_SET
# ---------------------------------------------------------------------------

def _apply_account_quota_set(state: Json, env: TxEnvelope) -> Json:
    require_admin(state, env)
    payload = _as_dict(env.payload)

    user = _as_str(payload.get("user")).strip()
    if not user:
        raise ApplyError(INVALID_PAYLOAD, "missing_user", {"tx_type": env.tx_type})

    quota = _as_int(payload.get("quota"), 0)
    if quota <= 0:
        raise ApplyError(INVALID_QUOTA, "quota_must_be_positive", {"user": user, "quota": payload.get("quota")})

    rec = ensure_account(state, user)
    previous = _as_int(rec.get("storage_quota"), 0)
    rec["storage_quota"] = quota

    return {
        "applied": "ACCOUNT_QUOTA_SET",
        "user": user,
        "storage_quota": quota,
        "event": make_event(
            EVENT_QUOTA_SET,
            actor=env.signer,
            payload={"user": user, "previous_quota": previous, "storage_quota": quota},
        ),
    }


QUOTA_TX_TYPES: Set[str] = {
    "ACCOUNT_INIT",
    "ACCOUNT_QUOTA_SET",
}


def apply_quota(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip()
    if t not in QUOTA_TX_TYPES:
        return None

    if t == "ACCOUNT_INIT":
        return _apply_account_init(state, env)
    if t == "ACCOUNT_QUOTA_SET":
        return _apply_account_quota_set(state, env)

    return None
