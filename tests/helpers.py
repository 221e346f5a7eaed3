"""Assertion helpers and stub ASGI apps shared by the test suite."""

from opentelemetry.sdk.metrics.export import (
    HistogramDataPoint,
    InMemoryMetricReader,
    NumberDataPoint,
)
from starlette.types import ASGIApp, Receive, Scope, Send


def collect_points(
    reader: InMemoryMetricReader, name: str
) -> list[NumberDataPoint | HistogramDataPoint]:
    """Return the data points currently aggregated for a metric.

    Args:
        reader: The in-memory reader attached to the registry.
        name: Instrument name.

    Returns:
        list[NumberDataPoint | HistogramDataPoint]: Data points of the metric,
            empty if nothing was recorded.
    """
    data = reader.get_metrics_data()
    if data is None:
        return []

    return [
        point
        for resource_metrics in data.resource_metrics
        for scope_metrics in resource_metrics.scope_metrics
        for metric in scope_metrics.metrics
        if metric.name == name
        for point in metric.data.data_points
    ]


def point_value(reader: InMemoryMetricReader, name: str, **attributes: str) -> float:
    """Return the value of the data point whose attributes equal ``attributes``.

    Histogram points report their count. Returns 0 when no point matches.
    """
    for point in collect_points(reader, name):
        if dict(point.attributes or {}) != attributes:
            continue
        if isinstance(point, HistogramDataPoint):
            return point.count
        return point.value
    return 0


def respond_with(status_code: int, body: bytes = b"{}") -> ASGIApp:
    """Build an ASGI app sending one complete JSON response."""

    async def _app(scope: Scope, receive: Receive, send: Send) -> None:
        await send(
            {
                "type": "http.response.start",
                "status": status_code,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send({"type": "http.response.body", "body": body})

    return _app


def raise_error(exc: BaseException) -> ASGIApp:
    """Build an ASGI app raising ``exc`` before responding."""

    async def _app(scope: Scope, receive: Receive, send: Send) -> None:
        raise exc

    return _app
