from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict, List, NamedTuple, Optional


Json = Dict[str, Any]


def _as_int(v: Any, default: int = 0) -> int:
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except Exception:
        return default


class AccountInfo(NamedTuple):
    used_storage: int
    storage_quota: int
    message_count: int
    active: bool


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only registry view used by the executor and the API.

    All methods are pure reads; none of them fail on unknown ids/users.
    """

    params: Dict[str, Any] = field(default_factory=dict)
    auth: Dict[str, Any] = field(default_factory=dict)
    accounts: Dict[str, Any] = field(default_factory=dict)
    messages: Dict[str, Any] = field(default_factory=dict)
    fees: Dict[str, Any] = field(default_factory=dict)
    registry_id: str = ""

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "LedgerView":
        def _d(key: str) -> Dict[str, Any]:
            v = state.get(key)
            return copy.deepcopy(v) if isinstance(v, dict) else {}

        return cls(
            params=_d("params"),
            auth=_d("auth"),
            accounts=_d("accounts"),
            messages=_d("messages"),
            fees=_d("fees"),
            registry_id=str(state.get("registry_id") or ""),
        )

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    @property
    def admin(self) -> str:
        return str(self.auth.get("admin") or "").strip()

    def authorized_callers(self) -> List[str]:
        callers = self.auth.get("callers")
        if not isinstance(callers, list):
            return []
        return sorted({str(c) for c in callers if str(c).strip()})

    def is_admin(self, caller: str) -> bool:
        return bool(self.admin) and caller == self.admin

    def is_authorized(self, caller: str) -> bool:
        if not caller:
            return False
        return self.is_admin(caller) or caller in set(self.authorized_callers())

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _by_id(self) -> Dict[str, Any]:
        v = self.messages.get("by_id")
        return v if isinstance(v, dict) else {}

    def total_count(self) -> int:
        """Number of ids ever allocated (deleted messages included)."""
        return max(0, _as_int(self.messages.get("next_id"), 1) - 1)

    def get_message(self, message_id: int) -> Optional[Json]:
        rec = self._by_id().get(str(_as_int(message_id, 0)))
        return copy.deepcopy(rec) if isinstance(rec, dict) else None

    def has_access(self, message_id: int, user: str) -> bool:
        rec = self._by_id().get(str(_as_int(message_id, 0)))
        if not isinstance(rec, dict) or not user:
            return False
        return user == str(rec.get("sender") or "") or user in set(rec.get("access") or [])

    def list_by_submitter(self, submitter: str, offset: int = 0, limit: int = 50) -> List[int]:
        """Ids sent by `submitter`, creation order, window [offset, offset+limit).

        Out-of-range windows are clipped, never rejected.
        """
        by_sender = self.messages.get("by_sender")
        ids = by_sender.get(submitter) if isinstance(by_sender, dict) else None
        if not isinstance(ids, list):
            return []
        start = max(0, _as_int(offset, 0))
        count = max(0, _as_int(limit, 0))
        if start >= len(ids) or count == 0:
            return []
        end = min(len(ids), start + count)
        return [int(x) for x in ids[start:end]]

    def submitter_message_total(self, submitter: str) -> int:
        by_sender = self.messages.get("by_sender")
        ids = by_sender.get(submitter) if isinstance(by_sender, dict) else None
        return len(ids) if isinstance(ids, list) else 0

    def message_id_for_content_ref(self, content_ref: str) -> Optional[int]:
        idx = self.messages.get("by_content_ref")
        if not isinstance(idx, dict):
            return None
        v = idx.get(content_ref)
        return None if v is None else _as_int(v, 0)

    # ------------------------------------------------------------------
    # Quota + fees
    # ------------------------------------------------------------------

    def account_info(self, user: str) -> AccountInfo:
        acct = self.accounts.get(user)
        if not isinstance(acct, dict):
            return AccountInfo(0, 0, 0, False)
        return AccountInfo(
            used_storage=_as_int(acct.get("used_storage"), 0),
            storage_quota=_as_int(acct.get("storage_quota"), 0),
            message_count=_as_int(acct.get("message_count"), 0),
            active=bool(acct.get("active", False)),
        )

    def fee_balance(self) -> int:
        return _as_int(self.fees.get("balance"), 0)

    def get_param(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)
