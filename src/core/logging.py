"""Structured logging built on Loguru.

Formatter types:
- **console**: Human-readable with inline context (development)
- **json**: Generic structured format (production, log shippers)

Standard library logging (uvicorn, the OpenTelemetry SDK exporters) is routed
into Loguru, so exporter failures show up in the same stream as request logs.
Request-scoped context such as ``trace_id`` is added with
``logger.contextualize`` by the tracing middleware.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Final, Protocol, cast

from loguru import logger


class _LoggingState:
    """Simple state holder to track if logging has been configured."""

    def __init__(self) -> None:
        self.configured = False


_state = _LoggingState()


class SettingsProtocol(Protocol):
    """Protocol for settings objects that setup_logging can accept."""

    @property
    def debug(self) -> bool:
        """Debug mode flag."""
        ...

    @property
    def log_config(self) -> LogConfigProtocol:
        """Log configuration."""
        ...


class LogConfigProtocol(Protocol):
    """Protocol for log configuration objects."""

    @property
    def log_level(self) -> str:
        """Logging level."""
        ...

    @property
    def log_formatter_type(self) -> str | None:
        """Log formatter type."""
        ...


# Constants
DEFAULT_LOG_FORMAT: Final[str] = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{message}"
)
TRACE_ID_DISPLAY_LENGTH: Final[int] = 8
MAX_FIELD_VALUE_LENGTH: Final[int] = 100

# Fields shown first, in this order, by the console formatter
PRIORITY_FIELDS: Final[tuple[str, ...]] = (
    "trace_id",
    "span_id",
    "handler",
    "method",
    "path",
    "status_code",
    "duration_ms",
)

# Standard LogRecord attributes that are not forwarded as extra context
_SKIP_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "exc_info",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "stack_info",
        "exc_text",
        "color_message",
        "taskName",
    }
)


def _escape(value: object) -> str:
    """Escape braces so Loguru does not treat them as format fields."""
    return str(value).replace("{", "{{").replace("}", "}}")


def _format_priority_field(field: str, value: object) -> str:
    """Format a priority field for display.

    Args:
        field: The field name.
        value: The field value.

    Returns:
        str: Formatted value.
    """
    if field in {"trace_id", "span_id"} and len(str(value)) > TRACE_ID_DISPLAY_LENGTH:
        value = str(value)[:TRACE_ID_DISPLAY_LENGTH]
    elif field == "duration_ms":
        value = f"{value}ms"
    elif field == "status_code":
        status_str = str(value)
        if status_str.startswith("2"):
            return f"<green>{status_str}</green>"
        if status_str.startswith("3"):
            return f"<yellow>{status_str}</yellow>"
        if status_str.startswith("4"):
            return f"<red>{status_str}</red>"
        if status_str.startswith("5"):
            return f"<red><bold>{status_str}</bold></red>"
    return _escape(value)


def _format_extra_field(key: str, value: object) -> str:
    """Format an extra field as ``key=value``, truncating long values."""
    str_value = str(value)
    if len(str_value) > MAX_FIELD_VALUE_LENGTH:
        str_value = str_value[: MAX_FIELD_VALUE_LENGTH - 3] + "..."
    return f"{_escape(key)}={_escape(str_value)}"


def _format_context_fields(extra: dict[str, Any]) -> list[str]:
    """Format all context fields from extra data.

    Args:
        extra: Extra fields from the log record.

    Returns:
        list[str]: List of formatted context parts.
    """
    context_parts = [
        f"<yellow>{_format_priority_field(field, extra[field])}</yellow>"
        for field in PRIORITY_FIELDS
        if extra.get(field) is not None
    ]

    context_parts.extend(
        f"<dim>{_format_extra_field(key, value)}</dim>"
        for key, value in extra.items()
        if key not in PRIORITY_FIELDS and not key.startswith("_") and value is not None
    )

    return context_parts


def format_console_with_context(record: dict[str, Any]) -> str:
    """Format log record for console with all context fields visible.

    Args:
        record: Loguru record to format.

    Returns:
        str: Format string for Loguru with the context inlined.
    """
    try:
        timestamp = record["time"].strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        parts = [
            f"<green>{timestamp}</green>",
            f"<level>{record['level'].name: <8}</level>",
            f"<cyan>{record['name']}:{record['function']}:{record['line']}</cyan>",
        ]

        if context_parts := _format_context_fields(record.get("extra", {})):
            parts.append(" ".join(f"[{part}]" for part in context_parts))

        parts.append(_escape(record.get("message", "")))

        if record.get("exception"):
            parts.append("\n{exception}")

        return " | ".join(parts) + "\n"
    except (AttributeError, TypeError, ValueError, KeyError):
        return DEFAULT_LOG_FORMAT + "\n"


def serialize_for_json(record: dict[str, Any]) -> str:
    """Format log record as a single JSON line.

    Args:
        record: Loguru record to format.

    Returns:
        str: JSON-formatted log entry with newline.
    """
    log_entry: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    if extra := record.get("extra", {}):
        log_entry.update({k: v for k, v in extra.items() if not k.startswith("_")})

    if exc := record.get("exception"):
        log_entry["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value) if exc.value else None,
        }

    return json.dumps(log_entry, default=str) + "\n"


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        """Forward log record to Loguru.

        Args:
            record: Standard library LogRecord to forward.
        """
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside of the logging module
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if (
                key not in logging.LogRecord.__dict__
                and not key.startswith("_")
                and key not in _SKIP_RECORD_FIELDS
            )
        }

        logger.opt(depth=depth, exception=record.exc_info).bind(**extra).log(
            level, record.getMessage()
        )


def _json_sink(message: object) -> None:
    """Write a structured log line for a Loguru message."""
    if hasattr(message, "record"):
        sys.stdout.write(serialize_for_json(message.record))
        sys.stdout.flush()


def setup_logging(settings: SettingsProtocol) -> None:
    """Configure Loguru and route standard library logging into it.

    Args:
        settings: Application settings containing log configuration.

    Note:
        This function only configures logging once per process.
    """
    if _state.configured:
        return

    logger.remove()

    formatter_type = settings.log_config.log_formatter_type or "console"

    if formatter_type == "json":
        logger.add(
            _json_sink,
            level=settings.log_config.log_level,
            enqueue=True,
            diagnose=False,
            backtrace=False,
        )
    else:
        logger.add(
            sys.stdout,
            format=cast("Any", format_console_with_context),
            level=settings.log_config.log_level,
            enqueue=True,
            colorize=True,
            diagnose=settings.debug,
            backtrace=settings.debug,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = [InterceptHandler()]
        uvicorn_logger.propagate = False

    logger.info(
        "Logging configured with {} formatter",
        formatter_type,
        log_level=settings.log_config.log_level,
    )

    _state.configured = True
