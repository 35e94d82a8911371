"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.

Error mapping:
    ValidationError         -> 422
    PermissionDeniedError   -> 403
    NotFoundError           -> 404
    ConflictError           -> 409
    ExternalDependencyError -> 503
    anything else           -> 500
"""

import time
import uuid
from typing import Callable, Dict, Type

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from municipal_ticketing.config import settings
from municipal_ticketing.core import (
    ApplicationException,
    ConflictError,
    ExternalDependencyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from municipal_ticketing.shared.clock import utcnow
from municipal_ticketing.shared.infrastructure.logging import correlation_id_var, get_logger

logger = get_logger(__name__)

CONFLICT_HINT = "someone else just acted on this — refresh and retry"

STATUS_CODES: Dict[Type[ApplicationException], int] = {
    ValidationError: 422,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    ExternalDependencyError: 503,
}


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with a correlation id, taken from the
    ``X-Correlation-ID`` header or generated, and echoes it on the response.

    The id is also bound to the logging context so that service-layer log
    lines carry it without passing it around.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests and responses.

    Provides audit trail and debugging information.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "actor_id": request.headers.get("X-Actor-Id"),
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


def status_code_for(exc: ApplicationException) -> int:
    for exc_type, code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return code
    return 400


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Map the error taxonomy to HTTP responses."""
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    status_code = status_code_for(exc)

    content = {
        "detail": exc.message,
        "error_type": type(exc).__name__,
        "details": exc.details,
        "correlation_id": correlation_id,
    }
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    if isinstance(exc, ConflictError):
        content["hint"] = CONFLICT_HINT

    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request rejected",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "status_code": status_code,
            "error_type": type(exc).__name__,
            "error_message": exc.message,
        }
    )
    return JSONResponse(status_code=status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    # Don't expose internal details in production
    is_dev = settings.environment == "development"

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": utcnow().isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
