"""FastAPI application initialization and lifecycle.

This module wires the telemetry pipeline around the HTTP surface:
- The tracing provider and metrics registry are created with the app and
  injected into every instrumented handler
- Both are initialized on startup; an ``InitError`` aborts startup
- Both are flushed on shutdown, each under its own deadline; shutdown
  failures are logged and never block process exit
- Instrumented handlers are wrapped as
  ``TracingMiddleware(ObservabilityMiddleware(handler))``
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from starlette.types import ASGIApp

from src.api.handlers.salestax import HANDLER_NAME, create_salestax_handler
from src.api.middleware.error_handler import register_exception_handlers
from src.api.middleware.observability import ObservabilityMiddleware
from src.api.middleware.tracing import TracingMiddleware
from src.api.utils.responses import ORJSONResponse
from src.core.config import Settings, get_settings
from src.core.exceptions import ShutdownTimeoutError
from src.core.logging import setup_logging
from src.core.metrics import MetricsRegistry, register_runtime_metrics
from src.core.observability import TracingProvider
from src.core.types import ShutdownFn


def instrument_handler(
    handler: ASGIApp,
    *,
    handler_name: str,
    registry: MetricsRegistry,
    tracing: TracingProvider,
    settings: Settings,
) -> ASGIApp:
    """Wrap a handler with tracing (outer) and metrics (inner) middleware.

    Args:
        handler: The ASGI handler to instrument.
        handler_name: Name used for the span and the ``handler`` attribute.
        registry: Shared metrics registry.
        tracing: Shared tracing provider.
        settings: Application settings.

    Returns:
        ASGIApp: The instrumented handler.
    """
    return TracingMiddleware(
        ObservabilityMiddleware(
            handler,
            handler_name=handler_name,
            registry=registry,
            slow_request_threshold_ms=settings.log_config.slow_request_threshold_ms,
        ),
        handler_name=handler_name,
        tracing=tracing,
        traceparent_format=settings.observability_config.traceparent_format,
    )


async def _shutdown_provider(name: str, shutdown: ShutdownFn, timeout: float) -> None:
    """Run a provider shutdown function off the event loop under a deadline."""
    try:
        await asyncio.wait_for(asyncio.to_thread(shutdown, timeout), timeout=timeout)
    except TimeoutError:
        logger.warning(
            "Error shutting down {}: deadline of {}s exceeded", name, timeout
        )
    except ShutdownTimeoutError as e:
        logger.warning("Error shutting down {}: {}", name, e)
    else:
        logger.info("{} shut down", name.capitalize())


@asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncGenerator[None]:
    """Initialize telemetry on startup and flush it on shutdown.

    Args:
        app_instance: The FastAPI application instance.

    Yields:
        None: Nothing is yielded, this is just a lifespan context.

    Raises:
        InitError: If a telemetry sink cannot be constructed.
    """
    settings: Settings = app_instance.state.settings
    tracing: TracingProvider = app_instance.state.tracing_provider
    registry: MetricsRegistry = app_instance.state.metrics_registry
    config = settings.observability_config

    shutdown_fns: list[tuple[str, ShutdownFn]] = []
    try:
        if config.enable_tracing:
            shutdown_fns.append(
                (
                    "tracing",
                    tracing.initialize(
                        config.trace_endpoint,
                        local_exporter=config.trace_local_exporter,
                    ),
                )
            )
        else:
            logger.info("Tracing disabled by configuration")

        if config.enable_metrics:
            shutdown_fns.append(
                (
                    "metrics",
                    registry.initialize(
                        config.metrics_endpoint,
                        export_interval_millis=config.metrics_export_interval_ms,
                    ),
                )
            )
            if config.enable_runtime_metrics:
                register_runtime_metrics(registry)
        else:
            logger.info("Metrics disabled by configuration")

        logger.info(
            "Application startup complete - {} v{}",
            app_instance.title,
            app_instance.version,
        )

        yield
    finally:
        logger.info("Application shutdown initiated")
        for name, shutdown in reversed(shutdown_fns):
            await _shutdown_provider(name, shutdown, config.shutdown_timeout_seconds)
        logger.info("Application shutdown complete")


def create_app(
    settings: Settings | None = None,
    *,
    metrics_registry: MetricsRegistry | None = None,
    tracing_provider: TracingProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings instance. Defaults to get_settings().
        metrics_registry: Registry to inject. A new one is created if omitted.
        tracing_provider: Tracing provider to inject. A new one is created if
            omitted.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    setup_logging(settings)

    service_name = settings.observability_config.service_name
    registry = metrics_registry or MetricsRegistry(service_name, settings.app_version)
    tracing = tracing_provider or TracingProvider(
        service_name, settings.app_version, settings.environment
    )

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.metrics_registry = registry
    application.state.tracing_provider = tracing

    register_exception_handlers(application)

    application.add_route(
        "/salestax",
        instrument_handler(
            create_salestax_handler(registry, tax_rate=settings.tax_rate),
            handler_name=HANDLER_NAME,
            registry=registry,
            tracing=tracing,
            settings=settings,
        ),
        name=HANDLER_NAME,
        include_in_schema=False,
    )

    @application.get("/health")
    async def health() -> dict[str, str]:
        """Liveness endpoint for container orchestration and load balancers.

        Returns:
            dict[str, str]: The service status.
        """
        return {"status": "ok"}

    return application


app = create_app()
