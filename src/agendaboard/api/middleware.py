"""API error handling middleware: consistent error responses.

Registers FastAPI exception handlers that convert domain exceptions into
standardised ``{"error": {"code": "...", "message": "..."}}`` JSON responses.

Status code mapping:
- ``TokenInvalidError`` -> 401 ``AUTH_ERROR``
- ``SessionExpiredError`` -> 401 ``SESSION_EXPIRED``
- ``RunInProgressError`` -> 409 ``RUN_IN_PROGRESS``
- ``ValueError`` -> 400 ``VALIDATION_ERROR``
- Any other ``Exception`` -> 500 ``INTERNAL_ERROR``
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from agendaboard.api.models import ErrorDetail, ErrorResponse
from agendaboard.calendar.errors import (
    SessionExpiredError,
    TokenInvalidError,
    sanitize_error_message,
)
from agendaboard.calendar.models import ErrorKind
from agendaboard.service import RunInProgressError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_token_invalid(
    request: Request,
    exc: TokenInvalidError,
) -> JSONResponse:
    """Return 401 when a sign-in credential or access grant is rejected."""
    logger.info("Rejected credential on %s: %s", request.url.path, exc)
    return _error_response(401, ErrorKind.AUTH_ERROR.value, sanitize_error_message(exc))


async def _handle_session_expired(
    request: Request,
    exc: SessionExpiredError,
) -> JSONResponse:
    """Return 401 when an operation needs a signed-in session."""
    logger.info("No usable session on %s: %s", request.url.path, exc)
    return _error_response(401, ErrorKind.SESSION_EXPIRED.value, sanitize_error_message(exc))


async def _handle_run_in_progress(
    request: Request,
    exc: RunInProgressError,
) -> JSONResponse:
    """Return 409 when the single-flight guard rejects a refresh."""
    logger.info("Refresh rejected: %s", exc)
    return _error_response(409, "RUN_IN_PROGRESS", str(exc))


async def _handle_value_error(
    request: Request,
    exc: ValueError,
) -> JSONResponse:
    """Return 400 for validation / value errors."""
    logger.info("Validation error: %s", exc)
    return _error_response(400, "VALIDATION_ERROR", str(exc))


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500."""

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
            return _error_response(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application.

    Call this from ``create_app()`` after constructing the ``FastAPI`` instance.
    """
    app.add_exception_handler(TokenInvalidError, _handle_token_invalid)  # type: ignore[arg-type]
    app.add_exception_handler(
        SessionExpiredError, _handle_session_expired  # type: ignore[arg-type]
    )
    app.add_exception_handler(RunInProgressError, _handle_run_in_progress)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
