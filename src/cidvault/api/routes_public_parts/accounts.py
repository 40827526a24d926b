from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from cidvault.api.routes_public_parts.common import _executor, _view
from cidvault.api.schemas import SetQuotaRequest
from cidvault.api.security import require_caller

router = APIRouter()

Json = Dict[str, Any]


@router.post("/accounts/{user}/init")
def init_account(request: Request, user: str) -> Json:
    caller = require_caller(request)
    _executor(request).initialize(user, caller)
    return {"ok": True, "user": user}


@router.get("/accounts/{user}/quota")
def account_quota(request: Request, user: str) -> Json:
    info = _view(request).account_info(user)
    return {"ok": True, "user": user, **info._asdict()}


@router.put("/accounts/{user}/quota")
def set_account_quota(request: Request, user: str, body: SetQuotaRequest) -> Json:
    caller = require_caller(request)
    _executor(request).set_quota(user, body.quota, caller)
    return {"ok": True, "user": user, "storage_quota": body.quota}
