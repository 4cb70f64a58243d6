"""
Exception types and FastAPI exception handlers.

Goals:
- one error body shape for clients: {"error": "<message>"}
- per-request errors stay local to the request (converted to a status)
- rich logs for operators, correlated through the active span
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Standard API error response."""

    error: Annotated[str, Field(description="Human readable error message")]


class AppError(Exception):
    """Base application error surfaced to the caller as an HTTP status."""

    def __init__(self, message: str, *, http_status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.http_status = http_status


class UserNotFoundError(AppError):
    """Raised when a user id does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__("User not found", http_status=404)
        self.user_id = user_id


class ProcessingFailedError(AppError):
    """Raised when simulated processing fails."""

    def __init__(self) -> None:
        super().__init__("Processing failed", http_status=500)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=ErrorResponse(error=message).model_dump()
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the app."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        logger.warning(
            "AppError",
            extra={
                "error_type": type(exc).__name__,
                "path": request.url.path,
                "status": exc.http_status,
            },
        )
        return _error(exc.http_status, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        response = _error(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            extra={"path": request.url.path},
        )
        return _error(500, "Internal server error")
