# src/cidvault/runtime/apply/messages.py
from __future__ import annotations

"""
Message ledger apply semantics (messages + reverse content index + per-message ACLs).

Tx types:
- MESSAGE_STORE          (authorized callers, value >= params.min_fee)
- MESSAGE_RETRIEVE       (read; persists nothing, emits "retrieved")
- MESSAGE_DELETE         (sender only)
- MESSAGE_ACCESS_GRANT   (sender only, message not deleted)
- MESSAGE_ACCESS_REVOKE  (sender only, deleted messages allowed)

Design goals:
- Ids are allocated from messages.next_id: strictly monotonic from 1, never reused
- Every check runs before the first write, in a fixed order, so the first
  failing precondition is the one reported
- content_ref is immutable; by_content_ref is populated once and never cleared,
  so a deleted message still blocks re-submission of the same content
- Deleted messages stay in by_id and by_sender, flagged

State shape:
state["messages"] = {
  "next_id": int,
  "by_id": {
      "<id>": {
          "id": int,
          "sender": str,
          "content_ref": str,
          "message_type": str,
          "created_at_ms": int,
          "deleted": bool,
          "deleted_at_ms": int,
          "access": [addr, ...],          # sorted unique; sender added at creation
      }
  },
  "by_content_ref": {"<content_ref>": int},
  "by_sender": {"<addr>": [int, ...]},    # append-only, creation order
}

Payload expectations:
- MESSAGE_STORE: "content_ref" (or "cid"), optional "message_type", optional
  "sender" (defaults to signer; lets an authorized caller store on behalf of a submitter)
- everything else: "message_id" (or "id"); grant/revoke also "grantee"
"""

from typing import Any, Dict, List, Optional, Set

from cidvault.runtime.apply.auth import is_admin, require_authorized
from cidvault.runtime.apply.fees import credit_fee
from cidvault.runtime.apply.quota import charge_message, release_message
from cidvault.runtime.errors import (
    ACCESS_DENIED,
    ALREADY_DELETED,
    DELETED,
    DUPLICATE_CONTENT,
    EMPTY_CONTENT_REF,
    INSUFFICIENT_FEE,
    INVALID_PAYLOAD,
    NOT_FOUND,
    NOT_SENDER,
    ApplyError,
)
from cidvault.runtime.events import (
    EVENT_ACCESS_GRANTED,
    EVENT_ACCESS_REVOKED,
    EVENT_DELETED,
    EVENT_RETRIEVED,
    EVENT_STORED,
    make_event,
)
from cidvault.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]

DEFAULT_MIN_FEE = 1_000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

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


def _pick(payload: Json, *keys: str) -> str:
    for k in keys:
        v = payload.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return ""


def _pick_verbatim(payload: Json, *keys: str) -> str:
    for k in keys:
        v = payload.get(k)
        if isinstance(v, str) and v != "":
            return v
    return ""


def _sorted_unique_strs(items: List[Any]) -> List[str]:
    out: List[str] = []
    for it in items:
        if isinstance(it, str) and it.strip():
            out.append(it.strip())
    return sorted(set(out))


def ensure_messages(state: Json) -> Json:
    m = state.get("messages")
    if not isinstance(m, dict):
        m = {}
        state["messages"] = m
    if _as_int(m.get("next_id"), 0) < 1:
        m["next_id"] = 1
    for key in ("by_id", "by_content_ref", "by_sender"):
        if not isinstance(m.get(key), dict):
            m[key] = {}
    return m


def min_fee(state: Json) -> int:
    v = _as_int(_as_dict(state.get("params")).get("min_fee"), -1)
    return v if v >= 0 else DEFAULT_MIN_FEE


def _message_id(env: TxEnvelope) -> int:
    payload = _as_dict(env.payload)
    raw = payload.get("message_id", payload.get("id"))
    if raw is None or isinstance(raw, bool):
        raise ApplyError(INVALID_PAYLOAD, "missing_message_id", {"tx_type": env.tx_type})
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ApplyError(INVALID_PAYLOAD, "bad_message_id", {"tx_type": env.tx_type, "message_id": raw}) from None


def _existing(m: Json, mid: int) -> Json:
    # Only ids in [1, next_id) were ever allocated.
    rec = m["by_id"].get(str(mid)) if 1 <= mid < _as_int(m.get("next_id"), 1) else None
    if not isinstance(rec, dict):
        raise ApplyError(NOT_FOUND, "message_not_found", {"message_id": mid})
    return rec


def _require_sender(rec: Json, env: TxEnvelope) -> None:
    if _as_str(rec.get("sender")) != env.signer:
        raise ApplyError(NOT_SENDER, "only_sender", {"message_id": rec.get("id"), "caller": env.signer})


def _grantee(env: TxEnvelope) -> str:
    g = _pick(_as_dict(env.payload), "grantee", "user", "account")
    if not g:
        raise ApplyError(INVALID_PAYLOAD, "missing_grantee", {"tx_type": env.tx_type})
    return g


def can_read(state: Json, rec: Json, requester: str) -> bool:
    """Retrieve-time permission: sender, access set member, or administrator."""
    if not requester:
        return False
    if requester == _as_str(rec.get("sender")):
        return True
    if requester in set(rec.get("access") or []):
        return True
    return is_admin(state, requester)


# ---------------------------------------------------------------------------
# MESSAGE_STORE
# ---------------------------------------------------------------------------

def _apply_message_store(state: Json, env: TxEnvelope) -> Json:
    m = ensure_messages(state)
    payload = _as_dict(env.payload)

    require_authorized(state, env)

    fee = min_fee(state)
    if int(env.value) < fee:
        raise ApplyError(INSUFFICIENT_FEE, "payment_below_min_fee", {"value": int(env.value), "min_fee": fee})

    content_ref = _pick_verbatim(payload, "content_ref", "cid")
    if not content_ref:
        raise ApplyError(EMPTY_CONTENT_REF, "missing_content_ref", {"tx_type": env.tx_type})

    if content_ref in m["by_content_ref"]:
        raise ApplyError(
            DUPLICATE_CONTENT,
            "content_ref_already_registered",
            {"content_ref": content_ref, "message_id": m["by_content_ref"][content_ref]},
        )

    sender = _pick(payload, "sender") or env.signer
    message_type = _as_str(payload.get("message_type"))

    mid = _as_int(m.get("next_id"), 1)
    m["next_id"] = mid + 1

    m["by_id"][str(mid)] = {
        "id": mid,
        "sender": sender,
        "content_ref": content_ref,
        "message_type": message_type,
        "created_at_ms": int(env.ts_ms),
        "deleted": False,
        "deleted_at_ms": 0,
        "access": [sender],
    }
    m["by_content_ref"][content_ref] = mid

    ids = m["by_sender"].get(sender)
    if not isinstance(ids, list):
        ids = []
    ids.append(mid)
    m["by_sender"][sender] = ids

    charge_message(state, sender)
    credit_fee(state, int(env.value))

    return {
        "applied": "MESSAGE_STORE",
        "message_id": mid,
        "sender": sender,
        "content_ref": content_ref,
        "event": make_event(
            EVENT_STORED,
            actor=env.signer,
            message_id=mid,
            payload={
                "sender": sender,
                "content_ref": content_ref,
                "message_type": message_type,
                "fee": int(env.value),
            },
        ),
    }


# ---------------------------------------------------------------------------
# MESSAGE_RETRIEVE
# ---------------------------------------------------------------------------

def _apply_message_retrieve(state: Json, env: TxEnvelope) -> Json:
    m = ensure_messages(state)
    mid = _message_id(env)
    rec = _existing(m, mid)

    if bool(rec.get("deleted", False)):
        raise ApplyError(DELETED, "message_deleted", {"message_id": mid})

    if not can_read(state, rec, env.signer):
        raise ApplyError(ACCESS_DENIED, "no_read_access", {"message_id": mid, "requester": env.signer})

    content_ref = _as_str(rec.get("content_ref"))
    return {
        "applied": "MESSAGE_RETRIEVE",
        "message_id": mid,
        "content_ref": content_ref,
        "event": make_event(EVENT_RETRIEVED, actor=env.signer, message_id=mid, payload={"requester": env.signer}),
    }


# ---------------------------------------------------------------------------
# MESSAGE_DELETE
# ---------------------------------------------------------------------------

def _apply_message_delete(state: Json, env: TxEnvelope) -> Json:
    m = ensure_messages(state)
    mid = _message_id(env)
    rec = _existing(m, mid)

    _require_sender(rec, env)
    if bool(rec.get("deleted", False)):
        raise ApplyError(ALREADY_DELETED, "message_already_deleted", {"message_id": mid})

    # Release first: an underflow must reject before the flag flips.
    release_message(state, _as_str(rec.get("sender")))
    rec["deleted"] = True
    rec["deleted_at_ms"] = int(env.ts_ms)

    return {
        "applied": "MESSAGE_DELETE",
        "message_id": mid,
        "event": make_event(EVENT_DELETED, actor=env.signer, message_id=mid, payload={"sender": rec.get("sender")}),
    }


# ---------------------------------------------------------------------------
# MESSAGE_ACCESS_GRANT / MESSAGE_ACCESS_REVOKE
# ---------------------------------------------------------------------------

def _apply_access_grant(state: Json, env: TxEnvelope) -> Json:
    m = ensure_messages(state)
    mid = _message_id(env)
    rec = _existing(m, mid)

    _require_sender(rec, env)
    if bool(rec.get("deleted", False)):
        raise ApplyError(DELETED, "message_deleted", {"message_id": mid})
    grantee = _grantee(env)

    access = _sorted_unique_strs(list(rec.get("access") or []))
    changed = grantee not in access
    rec["access"] = _sorted_unique_strs(access + [grantee])

    return {
        "applied": "MESSAGE_ACCESS_GRANT",
        "message_id": mid,
        "grantee": grantee,
        "deduped": not changed,
        "event": make_event(
            EVENT_ACCESS_GRANTED, actor=env.signer, message_id=mid, payload={"grantee": grantee, "changed": changed}
        ),
    }


def _apply_access_revoke(state: Json, env: TxEnvelope) -> Json:
    m = ensure_messages(state)
    mid = _message_id(env)
    rec = _existing(m, mid)

    _require_sender(rec, env)
    grantee = _grantee(env)

    access = _sorted_unique_strs(list(rec.get("access") or []))
    changed = grantee in access
    rec["access"] = [a for a in access if a != grantee]

    return {
        "applied": "MESSAGE_ACCESS_REVOKE",
        "message_id": mid,
        "grantee": grantee,
        "deduped": not changed,
        "event": make_event(
            EVENT_ACCESS_REVOKED, actor=env.signer, message_id=mid, payload={"grantee": grantee, "changed": changed}
        ),
    }


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

MESSAGE_TX_TYPES: Set[str] = {
    "MESSAGE_STORE",
    "MESSAGE_RETRIEVE",
    "MESSAGE_DELETE",
    "MESSAGE_ACCESS_GRANT",
    "MESSAGE_ACCESS_REVOKE",
}


def apply_messages(state: Json, env: TxEnvelope) -> Optional[Json]:
    """Apply message ledger txs. Returns meta dict if handled; otherwise None."""
    t = str(env.tx_type or "").strip()
    if t not in MESSAGE_TX_TYPES:
        return None

    if t == "MESSAGE_STORE":
        return _apply_message_store(state, env)
    if t == "MESSAGE_RETRIEVE":
        return _apply_message_retrieve(state, env)
    if t == "MESSAGE_DELETE":
        return _apply_message_delete(state, env)
    if t == "MESSAGE_ACCESS_GRANT":
        return _apply_access_grant(state, env)
    if t == "MESSAGE_ACCESS_REVOKE":
        return _apply_access_revoke(state, env)

    return None
