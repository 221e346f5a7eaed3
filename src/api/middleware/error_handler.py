"""Global exception handlers for the FastAPI application.

Handlers answer their own business errors; these handlers only cover what
escapes them, so that clients still receive an ``ErrorResponse``.
"""

import traceback

from fastapi import FastAPI, Request, status
from fastapi.responses import Response
from loguru import logger
from starlette.exceptions import HTTPException

from src.api.middleware.tracing import (
    TRACE_ID_STATE_KEY,
    TRACEPARENT_HEADER,
    TRACEPARENT_STATE_KEY,
)
from src.api.schemas.errors import ErrorResponse
from src.api.utils.responses import ORJSONResponse
from src.core.config import Settings
from src.core.exceptions import ErrorCode
from src.core.observability import current_trace_id


def _trace_id(request: Request) -> str | None:
    """Trace ID of the failed request.

    Unhandled exceptions reach these handlers after the request span has
    ended, so the ID recorded in the request state is used when no span is
    current.
    """
    return current_trace_id() or request.scope.get("state", {}).get(
        TRACE_ID_STATE_KEY
    )


async def http_exception_handler(request: Request, exc: Exception) -> Response:
    """Convert Starlette HTTPException (404, 405 from routing) to ErrorResponse.

    Args:
        request: The request that caused the exception
        exc: The HTTPException to handle

    Returns:
        Response: ORJSONResponse with error details

    Raises:
        TypeError: If exc is not an HTTPException instance
    """
    if not isinstance(exc, HTTPException):
        raise TypeError(f"Expected HTTPException, got {type(exc).__name__}")

    logger.warning(
        "HTTP exception",
        method=request.method,
        path=request.url.path,
        status_code=exc.status_code,
        detail=exc.detail,
    )

    error_response = ErrorResponse(
        error_code=ErrorCode.INTERNAL_ERROR.value
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR
        else ErrorCode.VALIDATION_ERROR.value,
        message=str(exc.detail),
        trace_id=_trace_id(request),
    )

    return ORJSONResponse(
        status_code=exc.status_code,
        content=error_response.model_dump(mode="json"),
        headers=exc.headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle unhandled exceptions.

    In production, hides internal error details from clients. The response
    carries the trace ID and ``traceparent`` of the request span, if any.

    Args:
        request: The request that caused the exception
        exc: The unhandled exception

    Returns:
        Response: ORJSONResponse with a generic error message
    """
    settings: Settings = request.app.state.settings

    logger.opt(exception=exc).error(
        "Unhandled exception: {}",
        type(exc).__name__,
        method=request.method,
        path=request.url.path,
    )

    if settings.environment == "production":
        message = "An internal server error occurred"
        details = None
    else:
        message = f"Internal server error: {type(exc).__name__}"
        details = {
            "error": str(exc),
            "stack_trace": traceback.format_tb(exc.__traceback__),
        }

    error_response = ErrorResponse(
        error_code=ErrorCode.INTERNAL_ERROR.value,
        message=message,
        details=details,
        trace_id=_trace_id(request),
    )

    traceparent = request.scope.get("state", {}).get(TRACEPARENT_STATE_KEY)
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response.model_dump(mode="json"),
        headers={TRACEPARENT_HEADER: traceparent} if traceparent else None,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.debug("Exception handlers registered")
