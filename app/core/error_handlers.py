"""
Translation of service errors into HTTP responses.

Every CommerceError subclass maps to exactly one status code here; the
body is always ``{"detail": ..., "code": ..., "retryable": ...}``.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.core.errors import (
    CommerceError,
    Conflict,
    DuplicateCode,
    EmptyCart,
    Expired,
    Forbidden,
    InvalidItem,
    InvalidState,
    InvalidTransition,
    LimitExceeded,
    NotEligible,
    NotFound,
    OutOfStock,
    UsageLimitReached,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[CommerceError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
    InvalidTransition: status.HTTP_400_BAD_REQUEST,
    InvalidState: status.HTTP_400_BAD_REQUEST,
    OutOfStock: status.HTTP_409_CONFLICT,
    LimitExceeded: status.HTTP_400_BAD_REQUEST,
    DuplicateCode: status.HTTP_409_CONFLICT,
    NotEligible: status.HTTP_400_BAD_REQUEST,
    Expired: status.HTTP_400_BAD_REQUEST,
    UsageLimitReached: status.HTTP_400_BAD_REQUEST,
    EmptyCart: status.HTTP_400_BAD_REQUEST,
    InvalidItem: status.HTTP_400_BAD_REQUEST,
    ValidationFailed: status.HTTP_422_UNPROCESSABLE_ENTITY,
    Conflict: status.HTTP_409_CONFLICT,
}


def status_for(exc: CommerceError) -> int:
    # Walk the MRO so subclasses without their own entry use their parent's
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return status.HTTP_400_BAD_REQUEST


def commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
    )


def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "code": "internal_error",
            "retryable": False,
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CommerceError, commerce_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
