from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cidvault.runtime import errors as E
from cidvault.runtime.errors import ApplyError


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}},
        )


_STATUS_BY_CODE: Dict[str, int] = {
    E.UNAUTHORIZED: 403,
    E.NOT_SENDER: 403,
    E.ACCESS_DENIED: 403,
    E.NOT_FOUND: 404,
    E.DELETED: 410,
    E.ALREADY_DELETED: 409,
    E.DUPLICATE_CONTENT: 409,
    E.NO_BALANCE: 409,
    E.REENTRANT_CALL: 409,
    E.INSUFFICIENT_FEE: 402,
    E.EMPTY_CONTENT_REF: 400,
    E.INVALID_QUOTA: 400,
    E.INVALID_PAYLOAD: 400,
    E.INVALID_TX: 400,
    E.TX_UNIMPLEMENTED: 400,
    E.TRANSFER_FAILED: 502,
}


def api_error_from_apply(e: ApplyError) -> ApiError:
    details = e.details if isinstance(e.details, dict) else ({} if e.details is None else {"details": e.details})
    return ApiError(_STATUS_BY_CODE.get(e.code, 500), e.code, e.reason, details)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        # Read back by RequestLogMiddleware as the request outcome.
        request.state.outcome = exc.code
        return exc.to_response()

    @app.exception_handler(ApplyError)
    async def _apply_error(request: Request, exc: ApplyError) -> JSONResponse:
        request.state.outcome = exc.code
        return api_error_from_apply(exc).to_response()
