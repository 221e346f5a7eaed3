"""Collector endpoint validation shared by the metrics and tracing sinks."""

from urllib.parse import urlsplit

from src.core.exceptions import InitError


def validate_collector_endpoint(endpoint: str, signal: str) -> str:
    """Validate a ``host:port`` (or ``scheme://host:port``) collector endpoint.

    The OTLP exporters connect lazily, so a malformed endpoint would only
    surface at the first push. Checking it here turns it into a startup
    failure instead.

    Args:
        endpoint: Endpoint as configured.
        signal: Telemetry signal the endpoint is for, used in the error.

    Returns:
        str: The stripped endpoint.

    Raises:
        InitError: If the endpoint has no host or an invalid port.
    """
    cleaned = endpoint.strip()
    context = {"signal": signal, "endpoint": endpoint}
    parsed = urlsplit(cleaned if "://" in cleaned else f"//{cleaned}")

    try:
        port = parsed.port
    except ValueError as e:
        raise InitError(
            f"Invalid port in {signal} collector endpoint: {endpoint!r}",
            context=context,
            cause=e,
        ) from e

    if not parsed.hostname or port is None:
        raise InitError(
            f"{signal.capitalize()} collector endpoint must be host:port, "
            f"got {endpoint!r}",
            context=context,
        )

    return cleaned
