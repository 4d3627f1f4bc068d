"""Credit rating API error handling.

Global exception handlers:
- CreditRatingHttpError: API-level errors (auth, RBAC) with structured envelope
- CreditRatingError: service errors mapped to HTTP status by kind
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: Pydantic request validation errors
- Exception: Catch-all for unhandled exceptions (no stack traces leaked)
"""

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from credit_rating.api.error_model import (
    get_error_code_for_status,
    make_error_response,
)
from credit_rating.errors import (
    CreditRatingError,
    DependencyError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SERVICE_ERROR_STATUS: dict[type[CreditRatingError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    StateConflictError: 409,
    DependencyError: 503,
}


class ErrorResponse(BaseModel):
    """Error envelope schema."""

    code: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str | None = None


# Documented error responses of every /v1 route
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse}
    for status in (400, 401, 403, 404, 409, 422, 503)
}


class CreditRatingHttpError(Exception):
    """Application-level HTTP error with structured error envelope.

    Attributes:
        status_code: HTTP status code (e.g., 401, 403).
        code: Machine-readable error code (e.g., "UNAUTHORIZED", "RBAC_DENIED").
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


def status_for_service_error(exc: CreditRatingError) -> int:
    """Return the HTTP status for a service error (500 for unknown kinds)."""
    for error_type, status in SERVICE_ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 500


async def credit_rating_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for CreditRatingHttpError."""
    assert isinstance(exc, CreditRatingHttpError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for service-layer CreditRatingError."""
    assert isinstance(exc, CreditRatingError)

    status = status_for_service_error(exc)
    if status >= 500:
        logger.error("Service error %s: %s", exc.code, exc.message)
    else:
        logger.info("Service error %s: %s", exc.code, exc.message)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=status,
        details=exc.details or None,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for HTTPException."""
    assert isinstance(exc, HTTPException)

    code = get_error_code_for_status(exc.status_code)
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"

    return make_error_response(
        request,
        code=code,
        message=message,
        http_status=exc.status_code,
        details=None,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for RequestValidationError.

    Reports field paths and messages only, not raw input values.
    """
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code="REQUEST_VALIDATION_FAILED",
        message="Request validation failed",
        http_status=422,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler for unhandled exceptions.

    Returns 500 with a generic message and logs the exception.
    """
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        http_status=500,
        details=None,
    )
