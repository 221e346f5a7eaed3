"""Standardized error response schema.

Every error returned by the API, whether produced by a handler or by the
global exception handler, uses ``ErrorResponse`` so that clients can rely on
one shape. For requests served by a traced handler, the ``trace_id``
matches the ``traceparent`` response header and locates the request's span
in the tracing backend; it is null for requests that never reached one, such
as unknown routes.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standardized error response model for API errors."""

    error_code: str = Field(
        ...,
        description="Unique error code identifying the error type",
        examples=["VALIDATION_ERROR", "METHOD_NOT_ALLOWED", "INTERNAL_ERROR"],
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Invalid request body", "Method not allowed"],
    )

    details: dict[str, Any] | None = Field(
        default=None,
        description="Additional error details",
        examples=[{"error_kind": "invalid_request_body"}],
    )

    trace_id: str | None = Field(
        default=None,
        description="Trace ID of the request, for correlating with traces",
        examples=["4bf92f3577b34da6a3ce929d0e0e4736"],
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the error occurred (with timezone)",
        examples=["2024-06-14T12:00:00+00:00"],
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error_code": "VALIDATION_ERROR",
                    "message": "Invalid request body",
                    "details": {"error_kind": "invalid_request_body"},
                    "trace_id": "4bf92f3577b34da6a3ce929d0e0e4736",
                    "timestamp": "2024-06-14T12:00:00+00:00",
                },
            ]
        }
    }
