from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from cidvault.api.routes_public_parts.common import _executor, _view
from cidvault.api.schemas import AdminTransferRequest, CallerRequest
from cidvault.api.security import require_caller

router = APIRouter()

Json = Dict[str, Any]


@router.post("/admin/callers")
def authorize_caller(request: Request, body: CallerRequest) -> Json:
    caller = require_caller(request)
    _executor(request).authorize(body.caller, caller)
    return {"ok": True, "caller": body.caller, "authorized": True}


@router.delete("/admin/callers/{target}")
def deauthorize_caller(request: Request, target: str) -> Json:
    caller = require_caller(request)
    _executor(request).deauthorize(target, caller)
    return {"ok": True, "caller": target, "authorized": False}


@router.get("/admin/callers/{target}")
def caller_status(request: Request, target: str) -> Json:
    return {"ok": True, "caller": target, "authorized": _view(request).is_authorized(target)}


@router.post("/admin/transfer")
def transfer_admin(request: Request, body: AdminTransferRequest) -> Json:
    caller = require_caller(request)
    _executor(request).transfer_admin(body.new_admin, caller)
    return {"ok": True, "admin": body.new_admin}


@router.post("/admin/withdraw")
def withdraw_fees(request: Request) -> Json:
    caller = require_caller(request)
    amount = _executor(request).withdraw(caller)
    return {"ok": True, "amount": amount}


@router.get("/admin/fees")
def fees(request: Request) -> Json:
    f = _view(request).fees
    return {
        "ok": True,
        "balance": int(f.get("balance") or 0),
        "total_collected": int(f.get("total_collected") or 0),
        "total_withdrawn": int(f.get("total_withdrawn") or 0),
    }
