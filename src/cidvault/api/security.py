from __future__ import annotations

import os
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from cidvault.api.errors import ApiError


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


def caller_header(request: Request) -> str:
    cfg = getattr(request.app.state, "cfg", None)
    return getattr(cfg, "caller_header", "x-caller-id")


def peek_caller(request: Request) -> str:
    """Caller identity from the configured header, or "" when absent."""
    return (request.headers.get(caller_header(request)) or "").strip()


def require_caller(request: Request) -> str:
    """Resolve the verified caller identity forwarded by the authenticating gateway.

    The registry never authenticates; it only authorizes the identity it is handed.
    """
    caller = peek_caller(request)
    if not caller:
        header = caller_header(request)
        raise ApiError.bad_request("missing_caller", f"{header} header is required", {"header": header})
    return caller


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Fail-fast request size limiter.

    - Enforces Content-Length when present.
    - Also caps buffered body size for mutating requests (chunked uploads).

    Configure:
      CIDVAULT_MAX_REQUEST_BYTES (default: 64_000)
      CIDVAULT_SIZE_LIMIT_DISABLE=1 to disable (only when enforced at the edge)
    """

    def __init__(
        self,
        app,
        *,
        max_bytes: Optional[int] = None,
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/v1/health"),
    ):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("CIDVAULT_SIZE_LIMIT_DISABLE"))
        if max_bytes is not None:
            self._max_bytes = int(max_bytes)
        else:
            self._max_bytes = _env_int("CIDVAULT_MAX_REQUEST_BYTES", 64_000)
        self._exempt_prefixes = exempt_prefixes

    def _too_large(self) -> JSONResponse:
        return ApiError(
            413, "request_too_large", "Request body too large", {"max_bytes": self._max_bytes}
        ).to_response()

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        cl = request.headers.get("content-length")
        if cl:
            try:
                if int(cl) > self._max_bytes:
                    return self._too_large()
            except ValueError:
                # Malformed header; the buffered body cap below still applies.
                pass

        if (request.method or "").upper() in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            if body and len(body) > self._max_bytes:
                return self._too_large()

        return await call_next(request)
