from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from cidvault.api.errors import ApiError
from cidvault.api.routes_public_parts.common import _executor, _int_param, _page_limit, _view
from cidvault.api.schemas import GrantAccessRequest, StoreMessageRequest
from cidvault.api.security import require_caller

router = APIRouter()

Json = Dict[str, Any]


@router.post("/messages")
def store_message(request: Request, body: StoreMessageRequest) -> Json:
    caller = require_caller(request)
    mid = _executor(request).store(
        caller,
        body.content_ref,
        body.message_type,
        payment=body.payment,
        sender=body.sender,
    )
    return {"ok": True, "message_id": mid}


# Declared before /messages/{message_id} so "count" is not parsed as an id.
@router.get("/messages/count")
def message_count(request: Request) -> Json:
    return {"ok": True, "total_count": _view(request).total_count()}


@router.get("/messages/{message_id}")
def get_message(request: Request, message_id: int) -> Json:
    """Full record, content_ref included, with no caller check.

    The registry treats record metadata as public. Only `retrieve` is gated by the
    access set, and it differs from this read by refusing deleted messages and
    emitting a `retrieved` event. Deployments that need the reference itself kept
    private must filter this route at the gateway.
    """
    rec = _view(request).get_message(message_id)
    if rec is None:
        raise ApiError.not_found("not_found", "message not found", {"message_id": message_id})
    return {"ok": True, "message": rec}


@router.get("/messages/{message_id}/content")
def retrieve_message(request: Request, message_id: int) -> Json:
    """Gated read: access checks run inside the executor and emit a `retrieved` event."""
    caller = require_caller(request)
    content_ref = _executor(request).retrieve(message_id, caller)
    return {"ok": True, "message_id": message_id, "content_ref": content_ref}


@router.delete("/messages/{message_id}")
def delete_message(request: Request, message_id: int) -> Json:
    caller = require_caller(request)
    _executor(request).remove(message_id, caller)
    return {"ok": True, "message_id": message_id, "deleted": True}


@router.post("/messages/{message_id}/access")
def grant_access(request: Request, message_id: int, body: GrantAccessRequest) -> Json:
    caller = require_caller(request)
    _executor(request).grant_access(message_id, body.grantee, caller)
    return {"ok": True, "message_id": message_id, "grantee": body.grantee}


@router.delete("/messages/{message_id}/access/{grantee}")
def revoke_access(request: Request, message_id: int, grantee: str) -> Json:
    caller = require_caller(request)
    _executor(request).revoke_access(message_id, grantee, caller)
    return {"ok": True, "message_id": message_id, "grantee": grantee}


@router.get("/messages/{message_id}/access/{user}")
def has_access(request: Request, message_id: int, user: str) -> Json:
    return {"ok": True, "message_id": message_id, "user": user, "has_access": _view(request).has_access(message_id, user)}


@router.get("/content/{content_ref}")
def lookup_content(request: Request, content_ref: str) -> Json:
    """Reverse lookup from content_ref to message id. Public, like `get_message`.

    The index is never cleared, so a deleted message still resolves here.
    """
    mid = _view(request).message_id_for_content_ref(content_ref)
    if mid is None:
        raise ApiError.not_found("not_found", "content_ref not registered", {"content_ref": content_ref})
    return {"ok": True, "content_ref": content_ref, "message_id": mid}


@router.get("/submitters/{submitter}/messages")
def list_by_submitter(request: Request, submitter: str) -> Json:
    qp = request.query_params
    offset = max(0, _int_param(qp.get("offset"), 0))
    limit = _page_limit(request, qp.get("limit"), 50)
    view = _view(request)
    return {
        "ok": True,
        "submitter": submitter,
        "offset": offset,
        "limit": limit,
        "total": view.submitter_message_total(submitter),
        "message_ids": view.list_by_submitter(submitter, offset, limit),
    }
