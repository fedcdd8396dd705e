"""Global exception handling for the fee API.

Maps the fee settlement error taxonomy to HTTP status codes. Every error
response has the same shape::

    {"statusCode": 409, "message": "...", "timestamp": "...", "path": "/api/v1/..."}

plus a ``details`` object in the development environment only.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from feesettle.exceptions import (
    ConcurrentModification,
    FeeSettlementError,
    InvalidAmount,
    InvalidStateTransition,
    LedgerSubmissionFailed,
    NotFound,
    Overflow,
    UnknownPromotionCode,
)
from feesettle.logging import get_logger

logger = get_logger(__name__)

_STATUS_BY_ERROR: list[tuple[type[FeeSettlementError], int]] = [
    (InvalidAmount, 400),
    (Overflow, 400),
    (UnknownPromotionCode, 400),
    (NotFound, 404),
    (InvalidStateTransition, 409),  # includes RetryExhausted
    (ConcurrentModification, 409),
    (LedgerSubmissionFailed, 502),
]


def status_for(exc: Exception) -> int:
    """HTTP status for an exception; 500 for anything unmapped."""
    if isinstance(exc, StarletteHTTPException):
        return exc.status_code
    if isinstance(exc, RequestValidationError):
        return 400
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def register_error_handlers(app: FastAPI, environment: str = "production") -> None:
    """Register the global exception handler on the FastAPI application.

    Args:
        app: The FastAPI application instance.
        environment: "development" adds exception details to responses.
    """

    def _respond(request: Request, exc: Exception) -> JSONResponse:
        status = status_for(exc)
        if status >= 500 and not isinstance(exc, StarletteHTTPException):
            message = "Internal server error"
            if isinstance(exc, FeeSettlementError):
                message = str(exc)
        elif isinstance(exc, StarletteHTTPException):
            message = str(exc.detail)
        elif isinstance(exc, RequestValidationError):
            message = "Request validation failed"
        else:
            message = str(exc)

        log = logger.error if status >= 500 else logger.warning
        log(
            "request_failed",
            method=request.method,
            path=request.url.path,
            status=status,
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=exc if status >= 500 else None,
        )

        body: dict[str, Any] = {
            "statusCode": status,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        }
        if environment == "development":
            details: dict[str, Any] = {"name": type(exc).__name__}
            if isinstance(exc, RequestValidationError):
                details["errors"] = jsonable_encoder(exc.errors())
            body["details"] = details
        return JSONResponse(status_code=status, content=body)

    @app.exception_handler(FeeSettlementError)
    async def handle_fee_error(request: Request, exc: FeeSettlementError) -> JSONResponse:
        return _respond(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return _respond(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _respond(request, exc)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        return _respond(request, exc)
