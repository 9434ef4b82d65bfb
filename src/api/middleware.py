"""API middleware: CORS, request logging, and error handling.

Provides helper functions and middleware classes to configure cross-origin
resource sharing, structured request logging (via structlog), and automatic
conversion of ``GroundbotError`` subclasses into JSON ``ErrorResponse``
bodies with a status code chosen by error type.

Starlette middleware is a stack (last added, first executed):

    app.add_middleware(ErrorHandlingMiddleware)    # added 1st, inner
    app.add_middleware(RequestLoggingMiddleware)   # added 2nd, outermost

so RequestLoggingMiddleware sees the *final* status code, including the
ones ErrorHandlingMiddleware produced.
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.api.schemas import ErrorResponse
from src.utils.errors import (
    CorruptFile,
    EmbeddingUnavailable,
    GenerationUnavailable,
    GroundbotError,
    IngestionInProgressError,
    NotFoundError,
    ScopeViolation,
    UnsupportedFormat,
    ValidationError,
)
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Checked in order; the first matching class wins.
_STATUS_BY_ERROR: tuple[tuple[type[GroundbotError], int], ...] = (
    (ValidationError, 422),
    (UnsupportedFormat, 422),
    (CorruptFile, 422),
    (NotFoundError, 404),
    (IngestionInProgressError, 409),
    (ScopeViolation, 403),
    (EmbeddingUnavailable, 503),
    (GenerationUnavailable, 503),
)


def status_for_error(exc: GroundbotError) -> int:
    """Return the HTTP status code for an application error (500 if unmapped)."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def error_response(exc: GroundbotError) -> JSONResponse:
    body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=status_for_error(exc), content=body.model_dump())


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware; all origins are allowed unless a list is given."""
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration.

    A request id is bound to structlog's context vars so every event logged
    while serving the request carries it.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        try:
            response = await call_next(request)
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert ``GroundbotError`` subclasses into structured JSON errors.

    The body carries the exception class name and its message only; stack
    traces stay in the server log.  Scope violations are logged with ids
    only, since their messages never include chunk text.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except GroundbotError as exc:
            status = status_for_error(exc)
            log = _logger.error if status >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=status,
                path=str(request.url.path),
            )
            return error_response(exc)
