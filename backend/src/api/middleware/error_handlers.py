"""FastAPI exception handlers producing the `{error, message, detail}` envelope."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...services.errors import ServiceError

logger = logging.getLogger(__name__)

# Fallback (error code, message) per status when a handler has nothing better
STATUS_ERRORS: Dict[int, Tuple[str, str]] = {
    status.HTTP_400_BAD_REQUEST: ("validation_error", "Invalid request payload"),
    status.HTTP_404_NOT_FOUND: ("not_found", "Resource not found"),
    status.HTTP_405_METHOD_NOT_ALLOWED: ("method_not_allowed", "Method not allowed"),
    status.HTTP_409_CONFLICT: ("version_conflict", "Resource version conflict"),
    status.HTTP_502_BAD_GATEWAY: ("upstream_error", "Upstream service failed"),
    status.HTTP_500_INTERNAL_SERVER_ERROR: ("internal_error", "Internal server error"),
}


def error_response(
    status_code: int,
    message: Optional[str] = None,
    *,
    error: Optional[str] = None,
    detail: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    fallback_error, fallback_message = STATUS_ERRORS.get(
        status_code, STATUS_ERRORS[status.HTTP_500_INTERNAL_SERVER_ERROR]
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error or fallback_error,
            "message": message or fallback_message,
            "detail": detail or None,
        },
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Request body validation maps to 400, not FastAPI's default 422
    return error_response(
        status.HTTP_400_BAD_REQUEST, detail={"errors": jsonable_encoder(exc.errors())}
    )


async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"Service error on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error} on {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.message, error=exc.error, detail=exc.detail)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else None
    return error_response(exc.status_code, message)


async def internal_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR)


def register_error_handlers(app: FastAPI) -> None:
    """Attach shared exception handlers to the FastAPI application."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, internal_exception_handler)


__all__ = [
    "register_error_handlers",
    "error_response",
    "validation_exception_handler",
    "service_exception_handler",
    "http_exception_handler",
    "internal_exception_handler",
]
