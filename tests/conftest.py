"""Root conftest.py for the Levy test suite.

This file contains project-wide fixtures shared by unit and integration
tests: isolated settings and in-memory telemetry pipelines.
"""

import os
from collections.abc import Generator, Iterator

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)

from src.core.config import get_settings
from src.core.metrics import MetricsRegistry
from src.core.observability import TracingProvider


@pytest.fixture(autouse=True)
def clean_lru_cache() -> Generator[None]:
    """Clear the settings cache before and after each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[pytest.MonkeyPatch]:
    """Remove app-specific environment variables for the duration of a test.

    Args:
        monkeypatch: Pytest monkeypatch fixture.

    Yields:
        pytest.MonkeyPatch: The monkeypatch instance for env manipulation.
    """
    env_prefixes = [
        "APP_",
        "API_",
        "ENVIRONMENT",
        "DEBUG",
        "TAX_RATE",
        "GRACEFUL_SHUTDOWN_SECONDS",
        "LOG_CONFIG__",
        "OBSERVABILITY_CONFIG__",
        "OTEL_",
        "PORT",
    ]
    for key in list(os.environ.keys()):
        if any(key.startswith(prefix) for prefix in env_prefixes):
            monkeypatch.delenv(key, raising=False)

    yield monkeypatch


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    """Provide a reader that collects metrics on demand."""
    return InMemoryMetricReader()


@pytest.fixture
def metrics_registry(
    metric_reader: InMemoryMetricReader,
) -> Iterator[MetricsRegistry]:
    """Provide an initialized registry that also feeds ``metric_reader``.

    The periodic console exporter never fires during a test because of the
    long export interval; assertions read through ``metric_reader`` instead.
    """
    registry = MetricsRegistry("test-service", "0.0.1")
    shutdown = registry.initialize(
        "stdout",
        export_interval_millis=3_600_000,
        extra_readers=[metric_reader],
        install_global=False,
    )
    yield registry
    shutdown(1.0)


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """Provide an exporter keeping finished spans in memory."""
    return InMemorySpanExporter()


@pytest.fixture
def tracing_provider(span_exporter: InMemorySpanExporter) -> Iterator[TracingProvider]:
    """Provide an initialized tracing provider exporting to ``span_exporter``."""
    provider = TracingProvider("test-service", "0.0.1", "development")
    shutdown = provider.initialize(
        None,
        local_exporter="none",
        span_processors=[SimpleSpanProcessor(span_exporter)],
        install_global=False,
    )
    yield provider
    shutdown(1.0)
