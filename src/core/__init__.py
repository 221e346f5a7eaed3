"""Core infrastructure package for the Levy service.

- **config**: Centralized configuration management with environment support
- **exceptions**: Error taxonomy for the telemetry pipeline and handlers
- **logging**: Structured logging with Loguru
- **metrics**: Metrics registry and instruments (OpenTelemetry metrics SDK)
- **observability**: Tracing provider and span exporters (OpenTelemetry SDK)
- **endpoints**: Collector endpoint validation
- **types**: Type aliases
"""
