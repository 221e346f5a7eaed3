"""Shared fixtures for integration tests.

The application is assembled with ``create_app`` around telemetry providers
that are already initialized against in-memory readers and exporters, so the
real middleware stack and handlers run while every metric and span stays
observable from the test.
"""

from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.api.main import create_app
from src.core.config import Settings
from src.core.metrics import MetricsRegistry
from src.core.observability import TracingProvider


@pytest.fixture
def app(
    metrics_registry: MetricsRegistry, tracing_provider: TracingProvider
) -> FastAPI:
    """Application wired to the in-memory telemetry pipelines."""
    return create_app(
        Settings(),
        metrics_registry=metrics_registry,
        tracing_provider=tracing_provider,
    )


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """HTTP client for the instrumented application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
