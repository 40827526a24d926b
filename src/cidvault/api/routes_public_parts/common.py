from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from cidvault.api.errors import ApiError
from cidvault.ledger.state import LedgerView

Json = Dict[str, Any]


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor not attached to app.state", {})
    return ex


def _view(request: Request) -> LedgerView:
    return _executor(request).view()


def _int_param(v: Any, default: int) -> int:
    """Parse an int-ish query param safely."""
    if v is None:
        return int(default)
    try:
        s = str(v).strip()
        if s == "":
            return int(default)
        return int(s)
    except ValueError:
        return int(default)


def _page_limit(request: Request, v: Any, default: int) -> int:
    cfg = getattr(request.app.state, "cfg", None)
    cap = int(getattr(cfg, "max_page_limit", 500) or 500)
    return max(0, min(_int_param(v, default), cap))
