from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from cidvault.api.routes_public_parts.common import _executor
from cidvault.runtime.metrics import format_prometheus, metrics_enabled, snapshot

router = APIRouter()

Json = Dict[str, Any]


@router.get("/health")
def health() -> Json:
    return {"ok": True}


@router.get("/status")
def status(request: Request) -> Json:
    """
    Registry status summary.

    Mounted under /v1 by routes_public.py, so the full path is:
      GET /v1/status
    """
    ex = _executor(request)
    view = ex.view()
    cfg = getattr(request.app.state, "cfg", None)
    return {
        "ok": True,
        "registry_id": view.registry_id,
        "mode": str(getattr(cfg, "mode", "") or ""),
        "admin": view.admin,
        "total_count": view.total_count(),
        "authorized_callers": len(view.authorized_callers()),
        "fee_balance": view.fee_balance(),
        "last_event_seq": ex.events.last_seq(),
    }


@router.get("/metrics")
def metrics_export(request: Request) -> Response:
    """Process metrics, Prometheus text by default or JSON with ?format=json.

    Disabled (404) unless CIDVAULT_METRICS_ENABLED=1.
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    if (request.query_params.get("format") or "").strip().lower() == "json":
        return JSONResponse(content=snapshot())
    return Response(content=format_prometheus(), media_type="text/plain")
