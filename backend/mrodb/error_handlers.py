"""
Exception handlers mapping failures onto the failure envelope.

`{"success": false, "message": ..., "error": <code>, "field"?: ...}`
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import AppError

logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    413: "request_too_large",
}


def _is_production() -> bool:
    return os.getenv("APP_ENV", "development").lower() == "production"


def _failure(status_code: int, message: str, code: str, **extra) -> JSONResponse:
    body = {"success": False, "message": message, "error": code}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=body, headers={"Cache-Control": "no-store"})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        log = logger.warning if exc.status_code >= 500 else logger.info
        log("%s %s -> %s %s: %s", request.method, request.url.path, exc.status_code, exc.code, exc.message)
        payload = exc.as_payload()
        if exc.details and not _is_production():
            payload["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"Cache-Control": "no-store"})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "form")]
        field = ".".join(loc) or None
        message = first.get("msg", "Invalid request")
        logger.info("Validation error on %s %s: %d field(s)", request.method, request.url.path, len(errors))
        return _failure(400, f"{field}: {message}" if field else message, "validation_error", field=field)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return _failure(exc.status_code, message, _HTTP_ERROR_CODES.get(exc.status_code, "error"))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        details = None if _is_production() else f"{type(exc).__name__}: {exc}"
        return _failure(500, "Internal server error", "unexpected_error", details=details)
