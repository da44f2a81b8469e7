"""
Mapping of domain exceptions to HTTP responses
"""
from typing import Any, Callable, TypeVar

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    InvalidSubmissionError,
    MarketMindsError,
    NotFoundError,
    QuotaExhaustedError,
    StorageError,
)
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_CODES = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (QuotaExhaustedError, status.HTTP_403_FORBIDDEN),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (InvalidSubmissionError, status.HTTP_400_BAD_REQUEST),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: MarketMindsError) -> int:
    for error_class, status_code in STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def marketminds_error_handler(request: Request, exc: MarketMindsError) -> JSONResponse:
    status_code = status_for(exc)
    body = {"code": exc.code, "error": exc.message}
    if isinstance(exc, AccessDeniedError) and exc.reason:
        body["reason"] = exc.reason

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "code": InvalidSubmissionError.code,
            "error": "Invalid request",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(MarketMindsError, marketminds_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)


def call_with_storage_retry(operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a mutating service call, retrying once if the database was unreachable."""
    try:
        return operation(*args, **kwargs)
    except StorageError as e:
        logger.warning(f"Storage error in {getattr(operation, '__name__', operation)}, retrying once: {e}")
        return operation(*args, **kwargs)
