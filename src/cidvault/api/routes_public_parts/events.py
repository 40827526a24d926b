from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from cidvault.api.routes_public_parts.common import _executor, _int_param, _page_limit

router = APIRouter()

Json = Dict[str, Any]


@router.get("/events")
def list_events(request: Request) -> Json:
    """Committed registry events in seq order, for indexers polling with ?after=<last seq>."""
    qp = request.query_params
    after = max(0, _int_param(qp.get("after"), 0))
    limit = _page_limit(request, qp.get("limit"), 100)
    kind = str(qp.get("kind") or "").strip()
    items = _executor(request).events.list(after_seq=after, limit=limit, kind=kind)
    next_after = items[-1]["seq"] if items else after
    return {"ok": True, "items": items, "next_after": next_after}
