# src/cidvault/runtime/state_invariants.py
from __future__ import annotations

"""State invariants / normalization helpers.

Registry state is a nested JSON-like dict mutated deterministically by the
apply/* modules. This module is the single place that:

  - validates the state is dict-like
  - ensures the core top-level containers exist (so domain modules can rely on them)
  - cross-checks the ledger invariants that must hold after every committed op

State shape:
state = {
  "registry_id": str,
  "params":   {"min_fee": int, "message_size_estimate": int, "default_quota": int},
  "auth":     {"admin": str, "callers": [str, ...]},          # callers sorted unique
  "accounts": {"<addr>": {"used_storage", "storage_quota", "message_count", "active"}},
  "messages": {
      "next_id": int,                                          # first id is 1
      "by_id": {"<id>": {...message record...}},
      "by_content_ref": {"<content_ref>": int},                # never cleared
      "by_sender": {"<addr>": [int, ...]},                     # append-only
  },
  "fees":     {"balance": int, "total_collected": int, "total_withdrawn": int},
}
"""

from collections.abc import MutableMapping
from typing import Any, Dict, List

from cidvault.runtime.apply.quota import message_size_estimate
from cidvault.runtime.errors import INVARIANT_VIOLATION, ApplyError

Json = Dict[str, Any]


def _ensure_dict(st: Json, key: str) -> Json:
    cur = st.get(key)
    if cur is None:
        cur = {}
        st[key] = cur
    elif not isinstance(cur, dict):
        # Fail closed: do not attempt to coerce arbitrary types.
        raise TypeError(f"state[{key!r}] must be dict, got {type(cur)}")
    return cur


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains core keys.

    Returns the (possibly mutated) dict.

    Raises:
        TypeError: if st (or one of its core containers) has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    _ensure_dict(st, "params")
    _ensure_dict(st, "accounts")

    auth = _ensure_dict(st, "auth")
    auth.setdefault("admin", "")
    if not isinstance(auth.get("callers"), list):
        auth["callers"] = []

    m = _ensure_dict(st, "messages")
    m.setdefault("next_id", 1)
    for key in ("by_id", "by_content_ref", "by_sender"):
        if not isinstance(m.get(key), dict):
            m[key] = {}

    fees = _ensure_dict(st, "fees")
    for key in ("balance", "total_collected", "total_withdrawn"):
        fees.setdefault(key, 0)

    return st  # type: ignore[return-value]


def invariant_problems(st: Json) -> List[str]:
    """Return a list of human-readable invariant violations (empty when healthy)."""
    problems: List[str] = []
    m = st.get("messages") if isinstance(st.get("messages"), dict) else {}
    by_id = m.get("by_id") if isinstance(m.get("by_id"), dict) else {}
    by_ref = m.get("by_content_ref") if isinstance(m.get("by_content_ref"), dict) else {}
    by_sender = m.get("by_sender") if isinstance(m.get("by_sender"), dict) else {}
    next_id = int(m.get("next_id", 1) or 1)
    estimate = message_size_estimate(st)

    if next_id < 1:
        problems.append(f"next_id must be >= 1, got {next_id}")

    # ids are dense: 1..next_id-1, nothing beyond.
    if len(by_id) != next_id - 1:
        problems.append(f"by_id has {len(by_id)} records, expected {next_id - 1}")

    live_by_sender: Dict[str, int] = {}
    for mid in range(1, next_id):
        rec = by_id.get(str(mid))
        if not isinstance(rec, dict):
            problems.append(f"message {mid} missing")
            continue
        ref = str(rec.get("content_ref") or "")
        if not ref:
            problems.append(f"message {mid} has empty content_ref")
        elif int(by_ref.get(ref, 0) or 0) != mid:
            problems.append(f"content_ref {ref!r} does not index message {mid}")
        sender = str(rec.get("sender") or "")
        if mid not in (by_sender.get(sender) or []):
            problems.append(f"message {mid} missing from sender list of {sender!r}")
        if not bool(rec.get("deleted", False)):
            live_by_sender[sender] = live_by_sender.get(sender, 0) + 1

    if len(by_ref) != len(by_id):
        problems.append(f"reverse index has {len(by_ref)} entries, expected {len(by_id)}")

    accounts = st.get("accounts") if isinstance(st.get("accounts"), dict) else {}
    for addr in sorted(set(accounts.keys()) | set(live_by_sender.keys())):
        acct = accounts.get(addr) if isinstance(accounts.get(addr), dict) else {}
        live = live_by_sender.get(addr, 0)
        used = int(acct.get("used_storage", 0) or 0)
        count = int(acct.get("message_count", 0) or 0)
        if used < 0 or count < 0:
            problems.append(f"account {addr!r} has negative usage")
        if count != live:
            problems.append(f"account {addr!r} message_count={count}, live messages={live}")
        if used != live * estimate:
            problems.append(f"account {addr!r} used_storage={used}, expected {live * estimate}")

    fees = st.get("fees") if isinstance(st.get("fees"), dict) else {}
    if int(fees.get("balance", 0) or 0) < 0:
        problems.append("fee balance is negative")

    return problems


def check_invariants(st: Json) -> None:
    problems = invariant_problems(st)
    if problems:
        raise ApplyError(INVARIANT_VIOLATION, "ledger_invariants_broken", {"problems": problems})


__all__ = ["ensure_state", "invariant_problems", "check_invariants"]
