"""Process-wide metrics registry built on the OpenTelemetry metrics SDK.

The registry owns the meter provider and the five HTTP instruments every
request writes to. It is created once at startup and injected into the
middlewares and handlers that record against it, so all requests aggregate
into the same instruments without relying on module globals.

Sinks:
- ``stdout``: human-readable records written by the console exporter
- ``host:port``: OTLP/gRPC push to a collector

Metrics are pushed by a periodic reader on its own thread (10 seconds by
default). Export failures are logged by the SDK and retried on the next tick.

Recording is fail-open: before ``initialize`` completes, after shutdown, or
when an instrument call fails, recording is a no-op and request handling is
never affected.
"""

from __future__ import annotations

from collections.abc import Generator, Iterable, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Final

import psutil
from loguru import logger
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import CallbackOptions, Observation
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource

from src.core.config import STDOUT_ENDPOINT
from src.core.endpoints import validate_collector_endpoint
from src.core.exceptions import InitError, ShutdownTimeoutError, SinkExportError
from src.core.observability import SERVICE_NAME_KEY, SERVICE_VERSION_KEY

if TYPE_CHECKING:
    from opentelemetry.metrics import (
        Counter,
        Histogram,
        Meter,
        ObservableGauge,
        UpDownCounter,
    )

    from src.core.types import ShutdownFn

METER_NAME: Final[str] = "levy"
DEFAULT_EXPORT_INTERVAL_MILLIS: Final[int] = 10_000

# Instrument names
REQUESTS_TOTAL: Final[str] = "http.requests.total"
ERRORS_TOTAL: Final[str] = "http.errors.total"
ACTIVE_CONNECTIONS: Final[str] = "http.active_connections"
REQUEST_DURATION: Final[str] = "http.request.duration"
RESPONSE_SIZE: Final[str] = "http.response.size"
PROCESS_MEMORY_RSS: Final[str] = "process.memory.rss"


class MetricsRegistry:
    """Shared handle to the metrics pipeline and its instruments.

    Args:
        service_name: Value of the ``service.name`` resource attribute.
        service_version: Value of the ``service.version`` resource attribute.
    """

    def __init__(self, service_name: str, service_version: str) -> None:
        self.service_name = service_name
        self.service_version = service_version
        self._provider: MeterProvider | None = None
        self._meter: Meter | None = None
        self._shutdown_fn: ShutdownFn | None = None

        self.requests_total: Counter | None = None
        self.errors_total: Counter | None = None
        self.active_connections: UpDownCounter | None = None
        self.request_duration: Histogram | None = None
        self.response_size: Histogram | None = None

    @property
    def enabled(self) -> bool:
        """Whether instruments exist and recording reaches a sink."""
        return self._meter is not None

    def get_meter(self) -> Meter | None:
        """Return the shared meter, or None while metrics are not initialized.

        Callers treat None as "telemetry disabled" and skip instrument creation.
        """
        return self._meter

    def initialize(
        self,
        endpoint: str,
        *,
        export_interval_millis: int = DEFAULT_EXPORT_INTERVAL_MILLIS,
        extra_readers: Sequence[MetricReader] = (),
        install_global: bool = True,
    ) -> ShutdownFn:
        """Set up the meter provider and create all instruments.

        Args:
            endpoint: ``"stdout"`` for local export or ``host:port`` of an
                OTLP collector.
            export_interval_millis: Interval between periodic pushes.
            extra_readers: Additional readers attached to the provider.
            install_global: Also register the provider as the global one.

        Returns:
            ShutdownFn: Flushes pending aggregates and releases the sink.

        Raises:
            InitError: If the sink or provider cannot be constructed.
        """
        if self._shutdown_fn is not None:
            logger.warning("Metrics already initialized, reusing existing pipeline")
            return self._shutdown_fn

        exporter = self._create_exporter(endpoint)

        try:
            reader = PeriodicExportingMetricReader(
                exporter, export_interval_millis=export_interval_millis
            )
            provider = MeterProvider(
                resource=Resource.create(
                    {
                        SERVICE_NAME_KEY: self.service_name,
                        SERVICE_VERSION_KEY: self.service_version,
                    }
                ),
                metric_readers=[reader, *extra_readers],
            )
            meter = provider.get_meter(METER_NAME, self.service_version)
            self._create_instruments(meter)
        except Exception as e:
            msg = f"Failed to create meter provider: {e}"
            raise InitError(msg, context={"signal": "metrics"}, cause=e) from e

        if install_global:
            metrics.set_meter_provider(provider)

        self._provider = provider
        self._meter = meter
        self._shutdown_fn = self._shutdown

        logger.info(
            "Metrics initialized, exporting to {}",
            endpoint,
            export_interval_ms=export_interval_millis,
        )
        return self._shutdown_fn

    def _create_exporter(self, endpoint: str) -> MetricExporter:
        if endpoint == STDOUT_ENDPOINT:
            try:
                return ConsoleMetricExporter()
            except Exception as e:
                msg = f"Failed to create stdout metric exporter: {e}"
                raise InitError(msg, context={"signal": "metrics"}, cause=e) from e

        target = validate_collector_endpoint(endpoint, "metrics")
        try:
            return OTLPMetricExporter(endpoint=target, insecure=True)
        except Exception as e:
            msg = f"Failed to create OTLP metric exporter: {e}"
            raise InitError(
                msg, context={"signal": "metrics", "endpoint": target}, cause=e
            ) from e

    def _create_instruments(self, meter: Meter) -> None:
        self.requests_total = meter.create_counter(
            REQUESTS_TOTAL,
            unit="1",
            description="Total number of HTTP requests",
        )
        self.errors_total = meter.create_counter(
            ERRORS_TOTAL,
            unit="1",
            description="Total number of HTTP errors",
        )
        self.active_connections = meter.create_up_down_counter(
            ACTIVE_CONNECTIONS,
            unit="1",
            description="Number of active HTTP connections",
        )
        self.request_duration = meter.create_histogram(
            REQUEST_DURATION,
            unit="s",
            description="HTTP request duration",
        )
        self.response_size = meter.create_histogram(
            RESPONSE_SIZE,
            unit="By",
            description="HTTP response size",
        )

    def _shutdown(self, timeout_seconds: float) -> None:
        """Flush and close the meter provider within ``timeout_seconds``.

        Raises:
            ShutdownTimeoutError: If the provider could not flush in time.
        """
        provider = self._provider
        self._provider = None
        self._meter = None
        self._shutdown_fn = None
        self.requests_total = None
        self.errors_total = None
        self.active_connections = None
        self.request_duration = None
        self.response_size = None
        if provider is None:
            return

        try:
            provider.shutdown(timeout_millis=timeout_seconds * 1000)
        except Exception as e:
            msg = f"Metrics provider did not shut down cleanly: {e}"
            raise ShutdownTimeoutError(
                msg, context={"timeout_seconds": timeout_seconds}, cause=e
            ) from e

    @contextmanager
    def _fail_open(self, operation: str) -> Generator[None]:
        """Log and swallow any failure raised while recording telemetry."""
        try:
            yield
        except Exception as e:
            error = SinkExportError(f"Failed to record {operation}", cause=e)
            logger.opt(exception=e).warning(
                "Telemetry recording failed: {}", error.message
            )

    def connection_opened(self) -> None:
        """Increment ``active_connections``."""
        if self.active_connections is None:
            return
        with self._fail_open(ACTIVE_CONNECTIONS):
            self.active_connections.add(1)

    def connection_closed(self) -> None:
        """Decrement ``active_connections``."""
        if self.active_connections is None:
            return
        with self._fail_open(ACTIVE_CONNECTIONS):
            self.active_connections.add(-1)

    def record_request(
        self,
        handler: str,
        method: str,
        status_code: int,
        duration_seconds: float,
        response_size: int,
    ) -> None:
        """Record the count, duration and response size of one request."""
        if not self.enabled:
            return
        with self._fail_open(REQUESTS_TOTAL):
            if self.requests_total is not None:
                self.requests_total.add(
                    1,
                    {"handler": handler, "method": method, "status": str(status_code)},
                )
        with self._fail_open(REQUEST_DURATION):
            if self.request_duration is not None:
                self.request_duration.record(
                    duration_seconds, {"handler": handler, "method": method}
                )
        with self._fail_open(RESPONSE_SIZE):
            if self.response_size is not None:
                self.response_size.record(response_size, {"handler": handler})

    def record_error(self, handler: str, error_kind: str) -> None:
        """Count a handler-level error and mark it on the current span.

        Never raises and never blocks the caller.

        Args:
            handler: Name of the handler reporting the error.
            error_kind: Short machine-readable error kind.
        """
        with self._fail_open("span error event"):
            span = trace.get_current_span()
            if span.is_recording():
                span.add_event(
                    "error", {"handler": handler, "error_kind": error_kind}
                )

        if self.errors_total is None:
            return
        with self._fail_open(ERRORS_TOTAL):
            self.errors_total.add(1, {"handler": handler, "error_kind": error_kind})


def _observe_process_memory(_options: CallbackOptions) -> Iterable[Observation]:
    """Report the resident set size of the current process."""
    yield Observation(psutil.Process().memory_info().rss)


def register_runtime_metrics(registry: MetricsRegistry) -> ObservableGauge | None:
    """Register the process memory gauge on an initialized registry.

    Args:
        registry: The metrics registry.

    Returns:
        ObservableGauge | None: The gauge, or None if metrics are disabled.
    """
    meter = registry.get_meter()
    if meter is None:
        logger.debug("Metrics not initialized, skipping runtime metrics")
        return None

    return meter.create_observable_gauge(
        PROCESS_MEMORY_RSS,
        callbacks=[_observe_process_memory],
        unit="By",
        description="Resident set size of the service process",
    )
