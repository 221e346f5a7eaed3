"""Structured exception hierarchy for the Levy service.

This module defines the error model shared by the telemetry pipeline and the
request handlers. Telemetry errors are classified by how fatal they are:

- **InitError**: a sink could not be constructed; aborts process start
- **SinkExportError**: telemetry could not be recorded or exported; logged
  and swallowed, the next cycle runs as scheduled
- **ShutdownTimeoutError**: a provider did not flush before its deadline;
  logged, teardown continues
- **HandlerError**: a business-level failure surfaced to the client as an
  HTTP error status

Every exception carries an error code and a severity so that logs and error
responses stay consistent across layers.
"""

from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Standardized error codes for the Levy service."""

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    """An unexpected internal error occurred in the system."""

    # Request errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Input validation failed due to invalid or malformed data."""

    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    """The HTTP method is not supported by the handler."""

    # Telemetry pipeline errors
    TELEMETRY_INIT_FAILED = "TELEMETRY_INIT_FAILED"
    """A metrics or tracing sink could not be constructed."""

    TELEMETRY_EXPORT_FAILED = "TELEMETRY_EXPORT_FAILED"
    """Telemetry could not be recorded or pushed to its sink."""

    TELEMETRY_SHUTDOWN_TIMEOUT = "TELEMETRY_SHUTDOWN_TIMEOUT"
    """A telemetry provider did not shut down within its deadline."""


class Severity(Enum):
    """Severity levels used to decide how loudly an error is reported."""

    LOW = "LOW"
    """Expected errors caused by client input."""

    MEDIUM = "MEDIUM"
    """Degraded behaviour that does not stop the service."""

    HIGH = "HIGH"
    """Errors impacting critical functionality."""

    CRITICAL = "CRITICAL"
    """Errors that prevent the service from running."""


class LevyError(Exception):
    """Base exception class for all Levy exceptions.

    Args:
        error_code: Unique identifier for the error type (string or ErrorCode enum)
        message: Human-readable error message
        severity: Severity level of the error (defaults to MEDIUM)
        context: Additional context information about the error
        cause: The original exception that caused this error
    """

    def __init__(
        self,
        error_code: str | ErrorCode,
        message: str,
        severity: Severity = Severity.MEDIUM,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.error_code = (
            error_code.value if isinstance(error_code, ErrorCode) else error_code
        )
        self.message = message
        self.severity = severity
        self.context = context or {}
        self.cause = cause

        super().__init__(message)
        if cause:
            self.__cause__ = cause

    @property
    def is_expected(self) -> bool:
        """Whether the error occurs during normal operation (LOW or MEDIUM)."""
        return self.severity in (Severity.LOW, Severity.MEDIUM)

    def __str__(self) -> str:
        """Return a string representation of the exception.

        Returns:
            str: A formatted string containing the error code and message
        """
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return a detailed representation of the exception.

        Returns:
            str: A string showing the class name, error code, message, severity,
                and context
        """
        class_name = self.__class__.__name__
        context_str = f", context={self.context}" if self.context else ""
        return (
            f"{class_name}(error_code='{self.error_code}', "
            f"message='{self.message}', severity={self.severity.value}{context_str})"
        )


class InitError(LevyError):
    """Raised when a telemetry sink cannot be constructed at startup.

    Args:
        message: Description of what could not be initialized
        context: Additional context (signal, endpoint, ...)
        cause: The original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            ErrorCode.TELEMETRY_INIT_FAILED, message, Severity.CRITICAL, context, cause
        )


class SinkExportError(LevyError):
    """Raised internally when telemetry cannot be recorded or exported.

    Never propagates into request handling; it only exists to be logged.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            ErrorCode.TELEMETRY_EXPORT_FAILED, message, Severity.LOW, context, cause
        )


class ShutdownTimeoutError(LevyError):
    """Raised when a telemetry provider fails to flush before its deadline."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            ErrorCode.TELEMETRY_SHUTDOWN_TIMEOUT,
            message,
            Severity.MEDIUM,
            context,
            cause,
        )


class HandlerError(LevyError):
    """Business-level failure that becomes an HTTP error response.

    Args:
        error_kind: Short machine-readable kind recorded on ``errors_total``
        message: Message returned to the client
        status_code: HTTP status code of the error response
        error_code: Error code (defaults to VALIDATION_ERROR)
        cause: The original exception that caused this error
    """

    def __init__(
        self,
        error_kind: str,
        message: str,
        status_code: int,
        error_code: str | ErrorCode = ErrorCode.VALIDATION_ERROR,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            error_code, message, Severity.LOW, {"error_kind": error_kind}, cause
        )
        self.error_kind = error_kind
        self.status_code = status_code
