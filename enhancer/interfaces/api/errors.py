"""
Standardized error response catalog for API consistency.
All HTTP error responses follow the RFC 7807 Problem Details format.

Mapping of internal errors:
  - ChunkNotFoundError           -> 404
  - RunInProgressError           -> 409
  - SplitError / validation      -> 422
  - FatalAPIError (+ subclasses) -> 502
  - CacheIOError, transient / rate-limited provider errors,
    AllCredentialsExhausted      -> 503
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ...crosscutting.exceptions import (
    AllCredentialsExhausted,
    CacheIOError,
    ChunkNotFoundError,
    EnhancementAPIError,
    EnhancerError,
    FatalAPIError,
    RunInProgressError,
    SplitError,
)
from ...crosscutting.logger import logger


class ErrorCode(str, Enum):
    """Application error codes for client-side handling."""

    # 4xx Client Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # 5xx Server Errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    CACHE_ERROR = "CACHE_ERROR"


class ErrorDetail(BaseModel):
    """RFC 7807 Problem Details response."""

    type: str = "about:blank"
    title: str
    status: int
    detail: str
    code: ErrorCode
    instance: str | None = None
    errors: list[dict[str, Any]] | None = None


PROBLEM_JSON_MEDIA_TYPE = "application/problem+json"


class AppHTTPException(HTTPException):
    """Application-specific HTTP exception with error code."""

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        errors: list[dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code
        self.errors = errors


# Pre-defined error factories
def validation_error(
    detail: str, errors: list[dict[str, Any]] | None = None
) -> AppHTTPException:
    return AppHTTPException(422, ErrorCode.VALIDATION_ERROR, detail, errors)


def not_found(resource: str, identifier: str) -> AppHTTPException:
    return AppHTTPException(
        404, ErrorCode.NOT_FOUND, f"{resource} '{identifier}' not found"
    )


def _status_for(exc: EnhancerError) -> tuple[int, ErrorCode]:
    if isinstance(exc, ChunkNotFoundError):
        return 404, ErrorCode.NOT_FOUND
    if isinstance(exc, RunInProgressError):
        return 409, ErrorCode.CONFLICT
    if isinstance(exc, SplitError):
        return 422, ErrorCode.VALIDATION_ERROR
    if isinstance(exc, FatalAPIError):
        return 502, ErrorCode.PROVIDER_ERROR
    if isinstance(exc, CacheIOError):
        return 503, ErrorCode.CACHE_ERROR
    if isinstance(exc, (EnhancementAPIError, AllCredentialsExhausted)):
        return 503, ErrorCode.SERVICE_UNAVAILABLE
    return 500, ErrorCode.INTERNAL_ERROR


# Exception handlers for FastAPI
async def app_exception_handler(
    request: Request, exc: AppHTTPException
) -> JSONResponse:
    """Handler for AppHTTPException."""
    error = ErrorDetail(
        type=f"https://api.enhancer.local/errors/{exc.code.value.lower()}",
        title=exc.code.value.replace("_", " ").title(),
        status=exc.status_code,
        detail=exc.detail,
        code=exc.code,
        instance=str(request.url),
        errors=exc.errors,
    )
    headers = getattr(exc, "headers", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=error.model_dump(exclude_none=True),
        headers=headers,
        media_type=PROBLEM_JSON_MEDIA_TYPE,
    )


async def enhancer_error_handler(request: Request, exc: EnhancerError) -> JSONResponse:
    """Handle internal errors with structured response."""
    status_code, code = _status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Enhancer error",
        extra={
            "error_id": exc.error_id,
            "error_code": exc.error_code,
            "error_message": exc.message,
        },
    )
    errors: list[dict[str, Any]] = [
        {"error_id": exc.error_id, "error_code": exc.error_code}
    ]
    headers: dict[str, str] | None = None
    if isinstance(exc, AllCredentialsExhausted):
        if exc.remaining_indices:
            errors[0]["remaining_indices"] = list(exc.remaining_indices)
        if exc.retry_after is not None:
            headers = {"Retry-After": str(math.ceil(exc.retry_after))}
    app_exc = AppHTTPException(
        status_code=status_code,
        code=code,
        detail=exc.message,
        errors=errors,
        headers=headers,
    )
    return await app_exception_handler(request, app_exc)


def register_exception_handlers(app) -> None:
    """Register all exception handlers on the FastAPI app."""
    app.add_exception_handler(EnhancerError, enhancer_error_handler)
    app.add_exception_handler(AppHTTPException, app_exception_handler)
