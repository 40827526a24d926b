# src/cidvault/api/structured_logging.py
"""HTTP-side logging for the registry API.

Records are JSON lines produced by `log_event`. The access record written for
every request carries the registry context of the call: the caller identity
(read through the configured caller header) and the outcome, which is "ok"
or the error code the client received.
"""

from __future__ import annotations

import logging
import os
import sys
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from cidvault.api.security import peek_caller
from cidvault.runtime.registry_logging import log_event

Json = Dict[str, Any]

_JSONL_HANDLER = "_cidvault_jsonl"


def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def configure_structured_logging(level_name: Optional[str] = None) -> None:
    """Route root logging to stdout as bare messages.

    Level comes from `level_name`, else CIDVAULT_LOG_LEVEL, else INFO. A second
    call only adjusts the level.
    """
    name = (level_name or os.environ.get("CIDVAULT_LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers:
        if getattr(h, _JSONL_HANDLER, False):
            h.setLevel(level)
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    setattr(handler, _JSONL_HANDLER, True)
    root.handlers = [handler]


def request_outcome(request: Request, status: int) -> str:
    code = getattr(request.state, "outcome", None)
    if code:
        return str(code)
    return "ok" if status < 400 else f"http_{status}"


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Writes one `http_request` record per call and echoes `x-request-id`.

    CIDVAULT_LOG_REQUESTS=0 turns the records off.
    CIDVAULT_LOG_REQUEST_HEADERS=1 adds user-agent and x-forwarded-for.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self._enabled = _flag("CIDVAULT_LOG_REQUESTS", True)
        self._with_headers = _flag("CIDVAULT_LOG_REQUEST_HEADERS", False)
        self._logger = logging.getLogger("cidvault.http")

    def _record(self, request: Request, request_id: str, started: float, status: int, error: Optional[str]) -> None:
        fields: Json = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "duration_ms": int((time.monotonic() - started) * 1000),
            "caller": peek_caller(request),
            "outcome": request_outcome(request, status),
        }
        if error:
            fields["error"] = error
        if self._with_headers:
            fields["headers"] = {
                k: request.headers[k] for k in ("user-agent", "x-forwarded-for") if k in request.headers
            }
        log_event(self._logger, "http_request", **fields)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as e:
            if self._enabled:
                self._record(request, request_id, started, 500, f"{type(e).__name__}: {e}")
            raise

        if self._enabled:
            self._record(request, request_id, started, int(response.status_code), None)
        response.headers.setdefault("x-request-id", request_id)
        return response
