# src/cidvault/runtime/events.py
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from cidvault.runtime.sqlite_db import SqliteDB, _canon_json

Json = Dict[str, Any]
Listener = Callable[[Json], None]

EVENT_STORED = "stored"
EVENT_RETRIEVED = "retrieved"
EVENT_DELETED = "deleted"
EVENT_ACCESS_GRANTED = "access_granted"
EVENT_ACCESS_REVOKED = "access_revoked"
EVENT_ACCOUNT_INITIALIZED = "account_initialized"
EVENT_QUOTA_SET = "quota_set"
EVENT_CALLER_AUTHORIZED = "caller_authorized"
EVENT_CALLER_DEAUTHORIZED = "caller_deauthorized"
EVENT_ADMIN_TRANSFERRED = "admin_transferred"
EVENT_FEES_WITHDRAWN = "fees_withdrawn"

EVENT_KINDS = frozenset(
    {
        EVENT_STORED,
        EVENT_RETRIEVED,
        EVENT_DELETED,
        EVENT_ACCESS_GRANTED,
        EVENT_ACCESS_REVOKED,
        EVENT_ACCOUNT_INITIALIZED,
        EVENT_QUOTA_SET,
        EVENT_CALLER_AUTHORIZED,
        EVENT_CALLER_DEAUTHORIZED,
        EVENT_ADMIN_TRANSFERRED,
        EVENT_FEES_WITHDRAWN,
    }
)

_log = logging.getLogger("cidvault.events")


def make_event(kind: str, *, actor: str, message_id: Optional[int] = None, payload: Optional[Json] = None) -> Json:
    """Build the structured record an applier hands back to the executor.

    seq and ts_ms are assigned when the record is persisted.
    """
    if kind not in EVENT_KINDS:
        raise ValueError(f"unknown event kind: {kind!r}")
    return {
        "kind": kind,
        "message_id": None if message_id is None else int(message_id),
        "actor": str(actor or ""),
        "payload": dict(payload or {}),
    }


def _row_to_event(row: sqlite3.Row) -> Json:
    return {
        "seq": int(row["seq"]),
        "kind": str(row["kind"]),
        "message_id": None if row["message_id"] is None else int(row["message_id"]),
        "actor": str(row["actor"]),
        "payload": json.loads(str(row["payload_json"])),
        "ts_ms": int(row["ts_ms"]),
    }


@dataclass
class EventLog:
    """Append-only SQLite event stream for external indexers/observers.

    Table schema:
      events(seq PK AUTOINCREMENT, kind, message_id, actor, payload_json, ts_ms)

    Guarantees:
      - append() runs on the caller's open write transaction, so an event is
        persisted iff the mutation it describes is committed
      - seq is strictly increasing in commit order
      - listeners are notified after commit, fire-and-forget
    """

    db: SqliteDB
    _listeners: List[Listener] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self.db.init_schema()

    def append(self, con: sqlite3.Connection, event: Json, *, ts_ms: int) -> Json:
        kind = str(event.get("kind") or "")
        if kind not in EVENT_KINDS:
            raise ValueError(f"unknown event kind: {kind!r}")
        mid = event.get("message_id")
        actor = str(event.get("actor") or "")
        payload = event.get("payload") if isinstance(event.get("payload"), dict) else {}
        cur = con.execute(
            "INSERT INTO events(kind, message_id, actor, payload_json, ts_ms) VALUES(?, ?, ?, ?, ?);",
            (kind, None if mid is None else int(mid), actor, _canon_json(payload), int(ts_ms)),
        )
        return {
            "seq": int(cur.lastrowid),
            "kind": kind,
            "message_id": None if mid is None else int(mid),
            "actor": actor,
            "payload": payload,
            "ts_ms": int(ts_ms),
        }

    def list(self, *, after_seq: int = 0, limit: int = 100, kind: str = "") -> List[Json]:
        limit = max(0, min(int(limit), 1000))
        if limit == 0:
            return []
        with self.db.connection() as con:
            if kind:
                rows = con.execute(
                    "SELECT * FROM events WHERE seq > ? AND kind = ? ORDER BY seq ASC LIMIT ?;",
                    (int(after_seq), str(kind), limit),
                ).fetchall()
            else:
                rows = con.execute(
                    "SELECT * FROM events WHERE seq > ? ORDER BY seq ASC LIMIT ?;",
                    (int(after_seq), limit),
                ).fetchall()
        return [_row_to_event(r) for r in rows]

    def last_seq(self) -> int:
        with self.db.connection() as con:
            row = con.execute("SELECT MAX(seq) AS s FROM events;").fetchone()
        if row is None or row["s"] is None:
            return 0
        return int(row["s"])

    def add_listener(self, fn: Listener) -> None:
        with self._lock:
            self._listeners.append(fn)

    def remove_listener(self, fn: Listener) -> None:
        with self._lock:
            self._listeners = [x for x in self._listeners if x is not fn]

    def notify(self, event: Json) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for fn in listeners:
            try:
                fn(event)
            except Exception:
                # Delivery is best-effort; the event is already durable.
                _log.exception("event listener failed (seq=%s kind=%s)", event.get("seq"), event.get("kind"))
