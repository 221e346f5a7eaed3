"""Distributed tracing pipeline using OpenTelemetry with pluggable exporters.

The tracing provider is created once at startup and injected into the
tracing middleware. It exports spans to:
- Local development: pretty-printed JSON on stdout, or through Loguru
- A collector: OTLP/gRPC, batched

Every span is sampled. Spans are batched and exported on a background
thread; the shutdown function flushes what is pending within a deadline.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, Literal, TypeAlias

from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
    SpanExportResult,
)
from opentelemetry.sdk.trace.sampling import ALWAYS_ON

from src.core.endpoints import validate_collector_endpoint
from src.core.exceptions import InitError, ShutdownTimeoutError, SinkExportError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from src.core.types import ShutdownFn

# Constants
SERVICE_NAME_KEY: Final[str] = "service.name"
SERVICE_VERSION_KEY: Final[str] = "service.version"
ENVIRONMENT_KEY: Final[str] = "deployment.environment"
TRACER_NAME: Final[str] = "levy"

LocalExporter: TypeAlias = Literal["stdout", "loguru", "none"]


class LoguruSpanExporter(SpanExporter):
    """Span exporter that writes finished spans through the Loguru logger."""

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """Log one structured record per span.

        This keeps local traces in the same stream and format as the
        application logs.
        """
        try:
            for span in spans:
                span_context = span.get_span_context()
                if not span_context:
                    continue

                duration_ms = None
                if span.end_time and span.start_time:
                    duration_ms = (span.end_time - span.start_time) // 1_000_000

                logger.bind(
                    trace_id=trace.format_trace_id(span_context.trace_id),
                    span_id=trace.format_span_id(span_context.span_id),
                    span_name=span.name,
                    span_kind=span.kind.name,
                    duration_ms=duration_ms,
                    attributes=dict(span.attributes or {}),
                    status=span.status.status_code.name,
                ).debug("Trace span completed: {}", span.name)
        except Exception as e:
            error = SinkExportError("Failed to log spans", cause=e)
            logger.opt(exception=e).warning("{}", error)
            return SpanExportResult.FAILURE

        return SpanExportResult.SUCCESS


class TracingProvider:
    """Shared handle to the span pipeline.

    Args:
        service_name: Value of the ``service.name`` resource attribute.
        service_version: Value of the ``service.version`` resource attribute.
        environment: Value of the ``deployment.environment`` resource attribute.
    """

    def __init__(
        self, service_name: str, service_version: str, environment: str
    ) -> None:
        self.service_name = service_name
        self.service_version = service_version
        self.environment = environment
        self._provider: TracerProvider | None = None
        self._shutdown_fn: ShutdownFn | None = None

    @property
    def enabled(self) -> bool:
        """Whether spans are being recorded."""
        return self._provider is not None

    def get_tracer(self) -> trace.Tracer:
        """Return the SDK tracer, or a no-op tracer while tracing is off."""
        if self._provider is None:
            return trace.NoOpTracer()
        return self._provider.get_tracer(TRACER_NAME, self.service_version)

    def initialize(
        self,
        endpoint: str | None,
        *,
        local_exporter: LocalExporter = "stdout",
        span_processors: Sequence[SpanProcessor] = (),
        install_global: bool = True,
    ) -> ShutdownFn:
        """Configure the tracer provider and its exporter.

        Args:
            endpoint: OTLP collector ``host:port``. Empty or None exports locally.
            local_exporter: Local exporter used when no endpoint is set.
            span_processors: Additional processors attached to the provider.
            install_global: Also register the provider as the global one.

        Returns:
            ShutdownFn: Flushes the batch exporter and closes the provider.

        Raises:
            InitError: If the exporter or provider cannot be constructed.
        """
        if self._shutdown_fn is not None:
            logger.warning("Tracing already initialized, reusing existing pipeline")
            return self._shutdown_fn

        exporter = self._create_exporter(endpoint, local_exporter)

        try:
            provider = TracerProvider(
                resource=Resource.create(
                    {
                        SERVICE_NAME_KEY: self.service_name,
                        SERVICE_VERSION_KEY: self.service_version,
                        ENVIRONMENT_KEY: self.environment,
                    }
                ),
                sampler=ALWAYS_ON,
            )
            if exporter is not None:
                provider.add_span_processor(BatchSpanProcessor(exporter))
            for processor in span_processors:
                provider.add_span_processor(processor)
        except Exception as e:
            msg = f"Failed to create tracer provider: {e}"
            raise InitError(msg, context={"signal": "traces"}, cause=e) from e

        if install_global:
            trace.set_tracer_provider(provider)

        self._provider = provider
        self._shutdown_fn = self._shutdown

        logger.info(
            "Tracing initialized",
            exporter=endpoint or local_exporter,
            service_name=self.service_name,
        )
        return self._shutdown_fn

    def _create_exporter(
        self, endpoint: str | None, local_exporter: LocalExporter
    ) -> SpanExporter | None:
        if not endpoint:
            logger.info(
                "Trace collector endpoint not set, exporting spans locally via {}",
                local_exporter,
            )
            if local_exporter == "loguru":
                return LoguruSpanExporter()
            if local_exporter == "none":
                return None
            try:
                return ConsoleSpanExporter()
            except Exception as e:
                msg = f"Failed to create stdout span exporter: {e}"
                raise InitError(msg, context={"signal": "traces"}, cause=e) from e

        target = validate_collector_endpoint(endpoint, "traces")
        logger.info("Tracing exporter configured for collector at {}", target)
        try:
            return OTLPSpanExporter(endpoint=target, insecure=True)
        except Exception as e:
            msg = f"Failed to create OTLP span exporter: {e}"
            raise InitError(
                msg, context={"signal": "traces", "endpoint": target}, cause=e
            ) from e

    def _shutdown(self, timeout_seconds: float) -> None:
        """Flush pending spans within ``timeout_seconds`` and close the provider.

        Raises:
            ShutdownTimeoutError: If pending spans could not be flushed in time.
        """
        provider = self._provider
        self._provider = None
        self._shutdown_fn = None
        if provider is None:
            return

        try:
            flushed = provider.force_flush(timeout_millis=int(timeout_seconds * 1000))
            provider.shutdown()
        except Exception as e:
            msg = f"Tracing provider did not shut down cleanly: {e}"
            raise ShutdownTimeoutError(
                msg, context={"timeout_seconds": timeout_seconds}, cause=e
            ) from e

        if not flushed:
            msg = f"Pending spans were not flushed within {timeout_seconds}s"
            raise ShutdownTimeoutError(
                msg, context={"timeout_seconds": timeout_seconds}
            )


def current_trace_id() -> str | None:
    """Return the hex trace ID of the current span, or None outside a trace."""
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return None
    return trace.format_trace_id(span_context.trace_id)
