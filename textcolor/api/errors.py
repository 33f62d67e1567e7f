"""
Structured error response schema and exception handlers.
Core errors map to HTTP statuses by their code; internal details are never exposed.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from textcolor.services.errors import (
    CoreError,
    DegenerateVectorError,
    InferenceError,
    InternalError,
    TokenizationError,
)

logger = logging.getLogger(__name__)

# Input the model cannot represent is the caller's problem (422); engine failures are ours.
_STATUS_BY_ERROR: list[tuple[type[CoreError], int]] = [
    (TokenizationError, 422),
    (DegenerateVectorError, 422),
    (InferenceError, 503),
    (InternalError, 500),
]


class ErrorBody(BaseModel):
    """Consistent error shape for all endpoints."""

    error: str
    detail: str | None = None


def error_response(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    """Return JSONResponse with ErrorBody shape."""
    body = ErrorBody(error=error, detail=detail)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
    )


def core_error_response(exc: CoreError) -> JSONResponse:
    """Translate a per-request core error; internal failures carry no detail."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = 500
    detail = None if status_code >= 500 else str(exc)
    return error_response(status_code, exc.code, detail=detail)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors (422) with consistent body."""
    detail = str(exc.errors()) if getattr(exc, "errors", None) else str(exc)
    return error_response(
        status_code=422,
        error="validation_error",
        detail=detail,
    )


async def core_exception_handler(request: Request, exc: CoreError) -> JSONResponse:
    """Core errors that escape a route (e.g. context not ready)."""
    logger.warning("Core error on %s: %s", request.url.path, exc)
    return core_error_response(exc)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log and return 500; do not expose internal details to caller."""
    logger.exception("Unhandled exception: %s", exc)
    return error_response(
        status_code=500,
        error="internal_error",
        detail=None,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""
    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler,
    )
    app.add_exception_handler(CoreError, core_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
