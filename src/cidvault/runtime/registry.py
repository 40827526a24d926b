from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional, Sequence

from cidvault.ledger.state import AccountInfo, LedgerView
from cidvault.runtime.domain_apply import apply_tx_on_copy
from cidvault.runtime.errors import REENTRANT_CALL, TRANSFER_FAILED, ApplyError
from cidvault.runtime.events import EventLog, Listener
from cidvault.runtime.metrics import record_op, set_gauge
from cidvault.runtime.payout import PayoutChannel, RecordingPayoutChannel
from cidvault.runtime.registry_logging import log_event
from cidvault.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from cidvault.runtime.state_invariants import ensure_state, invariant_problems
from cidvault.runtime.supported_txs import PAYOUT_TX_TYPES, READ_ONLY_TX_TYPES
from cidvault.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]

log = logging.getLogger("cidvault.registry")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _allocated(st: Json) -> int:
    return max(0, int(st.get("messages", {}).get("next_id", 1) or 1) - 1)


class ExecutorError(RuntimeError):
    pass


class RegistryExecutor:
    """Message registry executor using SQLite for persistence (snapshot + events).

    Every operation is one indivisible unit:
      BEGIN IMMEDIATE -> read snapshot -> apply on a deep copy
      -> write snapshot -> append event -> [payout] -> COMMIT

    The snapshot is re-read inside the write transaction, so several executors
    (threads or processes) sharing one DB file serialize on SQLite's writer
    lock and never allocate the same message id twice.
    """

    def __init__(
        self,
        *,
        db_path: str,
        registry_id: str,
        admin: str,
        params: Optional[Json] = None,
        authorized_callers: Sequence[str] = (),
        payout: Optional[PayoutChannel] = None,
    ) -> None:
        self.registry_id = str(registry_id)
        self.db_path = str(db_path)

        self._db = SqliteDB(path=self.db_path)
        self._db.init_schema()
        self._ledger_store = SqliteLedgerStore(db=self._db)
        self._events = EventLog(db=self._db)
        self._payout: PayoutChannel = payout if payout is not None else RecordingPayoutChannel()

        # RLock so a same-thread re-entry reaches the _busy check instead of deadlocking.
        self._lock = threading.RLock()
        self._busy = False

        # Genesis is written at most once, even with several processes booting together.
        with self._db.write_tx() as con:
            try:
                st = SqliteLedgerStore.read_in(con)
            except FileNotFoundError:
                st = self._initial_state(admin=admin, params=params or {}, authorized_callers=authorized_callers)
                SqliteLedgerStore.write_in(con, st)

        st_registry_id = str(st.get("registry_id") or "").strip()
        if st_registry_id and st_registry_id != self.registry_id:
            raise ExecutorError(
                f"registry_id mismatch: db={st_registry_id!r} executor={self.registry_id!r}. Refuse to start."
            )

        # Fail-closed if the persisted snapshot is corrupt.
        problems = invariant_problems(ensure_state(st))
        if problems:
            raise ExecutorError(f"ledger invariants broken in {self.db_path!r}: {problems}. Refuse to start.")

        self.state: Json = st
        set_gauge("messages_total", _allocated(st))

    def _initial_state(self, *, admin: str, params: Json, authorized_callers: Sequence[str]) -> Json:
        admin = str(admin or "").strip()
        if not admin:
            raise ExecutorError("admin identity is required at genesis")
        st: Json = {
            "registry_id": self.registry_id,
            "created_ms": _now_ms(),
            "params": dict(params),
            "auth": {
                "admin": admin,
                "callers": sorted({str(c).strip() for c in authorized_callers if str(c).strip()}),
            },
        }
        return ensure_state(st)

    # ----------------------------
    # Accessors
    # ----------------------------

    @property
    def db(self) -> SqliteDB:
        return self._db

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def payout(self) -> PayoutChannel:
        return self._payout

    def read_state(self) -> Json:
        st = self._ledger_store.read()
        self.state = st
        return st

    def view(self) -> LedgerView:
        return LedgerView.from_ledger(self.read_state())

    def add_listener(self, fn: Listener) -> None:
        self._events.add_listener(fn)

    # ----------------------------
    # Core commit path
    # ----------------------------

    @contextmanager
    def _exclusive(self, tx_type: str) -> Iterator[None]:
        with self._lock:
            if self._busy:
                raise ApplyError(REENTRANT_CALL, "registry_call_in_progress", {"tx_type": tx_type})
            self._busy = True
            try:
                yield
            finally:
                self._busy = False

    def _pay_out(self, meta: Json) -> None:
        to = str(meta.get("to") or "")
        amount = int(meta.get("amount") or 0)
        try:
            ok = bool(self._payout.send(to=to, amount=amount))
        except Exception as e:
            raise ApplyError(
                TRANSFER_FAILED, "payout_raised", {"to": to, "amount": amount, "error": f"{type(e).__name__}: {e}"}
            ) from e
        if not ok:
            raise ApplyError(TRANSFER_FAILED, "payout_rejected", {"to": to, "amount": amount})

    def submit(self, env: Any) -> Json:
        """Apply one envelope atomically and return its meta.

        meta["event"] is the persisted event record (with seq/ts_ms).
        Raises ApplyError with no persisted effect when any check fails.
        """
        env_norm = TxEnvelope.from_json(env)
        if env_norm.ts_ms <= 0:
            env_norm = replace(env_norm, ts_ms=_now_ms())
        t = str(env_norm.tx_type or "").strip().upper()

        try:
            with self._exclusive(t):
                with self._db.write_tx() as con:
                    current = SqliteLedgerStore.read_in(con)
                    working, meta = apply_tx_on_copy(current, env_norm)

                    if t in READ_ONLY_TX_TYPES:
                        working = current
                    else:
                        SqliteLedgerStore.write_in(con, working)

                    event = meta.pop("event", None)
                    recorded = self._events.append(con, event, ts_ms=env_norm.ts_ms) if event else None

                    if t in PAYOUT_TX_TYPES:
                        # Last step before COMMIT: snapshot and event are already written.
                        self._pay_out(meta)
        except ApplyError as e:
            record_op(t, error_code=e.code)
            log_event(
                log,
                "registry_reject",
                tx_type=t,
                signer=env_norm.signer,
                code=e.code,
                reason=e.reason,
                details=e.details,
            )
            raise

        self.state = working
        meta["event"] = recorded

        record_op(t, event_kind=recorded["kind"] if recorded else None)
        set_gauge("messages_total", _allocated(working))
        log_event(
            log,
            "registry_op",
            tx_type=t,
            signer=env_norm.signer,
            message_id=meta.get("message_id"),
            event_seq=recorded["seq"] if recorded else None,
        )

        if recorded is not None:
            self._events.notify(recorded)
        return meta

    def _tx(self, tx_type: str, signer: str, payload: Json, *, value: int = 0) -> Json:
        return self.submit(TxEnvelope(tx_type=tx_type, signer=str(signer or ""), payload=payload, value=int(value)))

    # ----------------------------
    # Message ledger
    # ----------------------------

    def store(
        self,
        caller: str,
        content_ref: str,
        message_type: str = "",
        *,
        payment: int,
        sender: Optional[str] = None,
    ) -> int:
        payload: Json = {"content_ref": content_ref, "message_type": message_type}
        if sender:
            payload["sender"] = sender
        meta = self._tx("MESSAGE_STORE", caller, payload, value=payment)
        return int(meta["message_id"])

    def retrieve(self, message_id: int, requester: str) -> str:
        meta = self._tx("MESSAGE_RETRIEVE", requester, {"message_id": message_id})
        return str(meta["content_ref"])

    def remove(self, message_id: int, caller: str) -> None:
        self._tx("MESSAGE_DELETE", caller, {"message_id": message_id})

    def grant_access(self, message_id: int, grantee: str, caller: str) -> None:
        self._tx("MESSAGE_ACCESS_GRANT", caller, {"message_id": message_id, "grantee": grantee})

    def revoke_access(self, message_id: int, grantee: str, caller: str) -> None:
        self._tx("MESSAGE_ACCESS_REVOKE", caller, {"message_id": message_id, "grantee": grantee})

    def get(self, message_id: int) -> Optional[Json]:
        return self.view().get_message(message_id)

    def list_by_submitter(self, submitter: str, offset: int = 0, limit: int = 50) -> List[int]:
        return self.view().list_by_submitter(submitter, offset, limit)

    def has_access(self, message_id: int, user: str) -> bool:
        return self.view().has_access(message_id, user)

    def total_count(self) -> int:
        return self.view().total_count()

    # ----------------------------
    # Quota ledger
    # ----------------------------

    def initialize(self, user: str, caller: str) -> None:
        self._tx("ACCOUNT_INIT", caller, {"user": user})

    def set_quota(self, user: str, quota: int, caller: str) -> None:
        self._tx("ACCOUNT_QUOTA_SET", caller, {"user": user, "quota": quota})

    def info(self, user: str) -> AccountInfo:
        return self.view().account_info(user)

    # ----------------------------
    # Authorization gate / admin
    # ----------------------------

    def is_authorized(self, caller: str) -> bool:
        return self.view().is_authorized(caller)

    def authorize(self, target: str, caller: str) -> None:
        self._tx("AUTH_CALLER_ADD", caller, {"caller": target})

    def deauthorize(self, target: str, caller: str) -> None:
        self._tx("AUTH_CALLER_REMOVE", caller, {"caller": target})

    def transfer_admin(self, new_admin: str, caller: str) -> None:
        self._tx("ADMIN_TRANSFER", caller, {"new_admin": new_admin})

    def withdraw(self, caller: str) -> int:
        meta = self._tx("FEES_WITHDRAW", caller, {})
        return int(meta["amount"])

    def fee_balance(self) -> int:
        return self.view().fee_balance()
