"""API error handling middleware for consistent error responses.

Registers FastAPI exception handlers that convert domain exceptions into
standardised ``{"error": {"code": "...", "message": "...", "details": ...}}``
JSON responses.

Status code mapping:
- ``PreconditionError`` → 422 Unprocessable Entity (code from the exception)
- ``NotFoundError`` → 404 Not Found
- ``PersistenceError`` → 503 Service Unavailable
- ``ValueError`` → 400 Bad Request
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from staysync.api.models import ErrorDetail, ErrorResponse
from staysync.errors import NotFoundError, PersistenceError, PreconditionError

logger = logging.getLogger(__name__)


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


async def _handle_precondition(request: Request, exc: PreconditionError) -> JSONResponse:
    """Return 422 when the operation cannot start (no sources, no workers)."""
    logger.info("Precondition failed on %s: %s", request.url.path, exc.message)
    return error_response(422, exc.code, exc.message, exc.details)


async def _handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.info("Not found: %s", exc)
    return error_response(404, "NOT_FOUND", str(exc))


async def _handle_persistence(request: Request, exc: PersistenceError) -> JSONResponse:
    """Return 503 when the relational store is failing."""
    logger.warning("Store failure on %s %s: %s", request.method, request.url.path, exc)
    return error_response(503, "STORE_UNAVAILABLE", "The data store is unavailable")


async def _handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    """Return 400 for validation / value errors."""
    logger.info("Validation error: %s", exc)
    return error_response(400, "VALIDATION_ERROR", str(exc))


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    This sits above the Starlette exception handler layer, so exceptions not
    caught by ``add_exception_handler`` are still converted to the standard
    error envelope rather than bubbling up as raw 500s.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return error_response(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application.

    Call this from ``create_app()`` after constructing the ``FastAPI`` instance.
    """
    app.add_exception_handler(PreconditionError, _handle_precondition)  # type: ignore[arg-type]
    app.add_exception_handler(NotFoundError, _handle_not_found)  # type: ignore[arg-type]
    app.add_exception_handler(PersistenceError, _handle_persistence)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
