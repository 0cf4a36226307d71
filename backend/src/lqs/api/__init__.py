"""FastAPI routes and API modules for LQS.

Provides common response models, error handlers, and utilities.
"""

from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..exceptions import (
    AlreadyResolved,
    BatchAborted,
    CaseNotFound,
    HouseholdNotFound,
    InvalidTransition,
    LQSError,
    SaleAlreadyLinked,
    StorageError,
    ValidationError,
)
from ..logging import get_logger

# =========================
# Response Models
# =========================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str
    message: str
    field: str | None = None
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: str
    error_code: str
    details: list[ErrorDetail] | None = None


# =========================
# Exception Classes
# =========================


class APIError(HTTPException):
    """Base API error with structured response."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: list[ErrorDetail] | None = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


# Domain errors that escape a request, by HTTP status
_DOMAIN_STATUS: list[tuple[type[LQSError], int]] = [
    (CaseNotFound, 404),
    (HouseholdNotFound, 404),
    (AlreadyResolved, 409),
    (SaleAlreadyLinked, 409),
    (InvalidTransition, 409),
    (ValidationError, 422),
    (BatchAborted, 503),
    (StorageError, 503),
]


def status_for(exc: LQSError) -> int:
    for error_type, status_code in _DOMAIN_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


# =========================
# Exception Handlers
# =========================


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            error_code=exc.error_code,
            details=exc.details,
        ).model_dump(),
        headers={"X-Error-Code": exc.error_code},
    )


async def lqs_error_handler(request: Request, exc: LQSError) -> JSONResponse:
    """Handle domain errors raised by the engine."""
    details = None
    if isinstance(exc, BatchAborted):
        details = [
            ErrorDetail(code=exc.error_code, message=exc.message, details=exc.summary)
        ]

    return JSONResponse(
        status_code=status_for(exc),
        content=ErrorResponse(
            error=exc.message,
            error_code=exc.error_code,
            details=details,
        ).model_dump(),
        headers={"X-Error-Code": exc.error_code},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTPException."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            error_code="HTTP_ERROR",
        ).model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="An unexpected error occurred",
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )


def register_exception_handlers(app):
    """Register exception handlers with the FastAPI app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(LQSError, lqs_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
