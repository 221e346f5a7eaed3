"""Centralized configuration management with environment-aware defaults.

This module implements the configuration system using Pydantic Settings,
providing type-safe configuration with validation and environment variable
support.

Features:
- **Type safety**: All configuration values are validated and typed
- **Environment variables**: Supports .env files and environment overrides
- **Nested configuration**: Uses __ delimiter for complex config structures
- **Collector conventions**: Falls back to the conventional OpenTelemetry
  endpoint variables when the nested ones are not set
- **Caching**: Configuration is cached for performance

Configuration sources (in order of precedence):
1. Environment variables
2. .env file in project root
3. Default values in model definitions
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.constants import DEFAULT_TAX_RATE

# Conventional collector variables honoured when the nested settings are unset
TRACE_ENDPOINT_ENV = "OTEL_EXPORTER_OTLP_ENDPOINT"
METRICS_ENDPOINT_ENV = "OTEL_COLLECTOR_ENDPOINT"

# Metrics endpoint value selecting the local console exporter
STDOUT_ENDPOINT = "stdout"


class LogConfig(BaseModel):
    """Logging configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_formatter_type: Literal["console", "json"] | None = Field(
        default=None,
        description="Log output formatter. Auto-detected if not specified.",
    )
    slow_request_threshold_ms: int = Field(
        default=1000,
        gt=0,
        description="Threshold for slow request warnings (milliseconds)",
    )


class ObservabilityConfig(BaseModel):
    """Tracing and metrics pipeline configuration."""

    service_name: str = Field(
        default="labapiserver",
        description="Service name reported on every span and metric",
    )
    enable_tracing: bool = Field(
        default=True,
        description="Enable OpenTelemetry tracing",
    )
    enable_metrics: bool = Field(
        default=True,
        description="Enable OpenTelemetry metrics",
    )
    trace_endpoint: str | None = Field(
        default=None,
        description="OTLP collector endpoint for traces. Empty exports locally.",
    )
    trace_local_exporter: Literal["stdout", "loguru", "none"] = Field(
        default="stdout",
        description="Local span exporter used when no trace endpoint is set",
    )
    metrics_endpoint: str | None = Field(
        default=None,
        description=(
            "OTLP collector endpoint for metrics, or 'stdout'. Unset falls back "
            "to OTEL_COLLECTOR_ENDPOINT, then stdout."
        ),
    )
    metrics_export_interval_ms: int = Field(
        default=10_000,
        gt=0,
        description="Interval between periodic metric pushes (milliseconds)",
    )
    shutdown_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Deadline for flushing each telemetry provider at shutdown",
    )
    traceparent_format: Literal["w3c", "trace_id"] = Field(
        default="w3c",
        description=(
            "Content of the traceparent response header: a full W3C "
            "traceparent string or the bare trace ID"
        ),
    )
    enable_runtime_metrics: bool = Field(
        default=True,
        description="Report process memory usage as an observable gauge",
    )

    @field_validator("trace_endpoint", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: str | None) -> str | None:
        """Convert empty strings to None for nullable fields."""
        if v == "":
            return None
        return v

    @field_validator("metrics_endpoint", mode="before")
    @classmethod
    def empty_str_to_stdout(cls, v: str | None) -> str:
        """An explicitly empty metrics endpoint selects stdout export."""
        if not v:
            return STDOUT_ENDPOINT
        return v


class Settings(BaseSettings):
    """Main settings class for the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        env_nested_delimiter="__",
    )

    # Application settings
    app_name: str = Field(default="Levy", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Environment the application is running in",
    )
    debug: bool = Field(default=False, description="Debug mode flag")

    # API settings
    api_host: str = Field(default="0.0.0.0", description="API host")  # noqa: S104
    api_port: int = Field(default=8080, description="API port")
    graceful_shutdown_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Time allowed for in-flight requests to drain on shutdown",
    )
    docs_url: str | None = Field(default="/docs", description="Swagger UI URL")
    redoc_url: str | None = Field(default="/redoc", description="ReDoc URL")
    openapi_url: str | None = Field(
        default="/openapi.json", description="OpenAPI schema URL"
    )

    # Business settings
    tax_rate: float = Field(
        default=DEFAULT_TAX_RATE,
        description="Sales tax rate in percent applied by /salestax",
    )

    # Logging configuration
    log_config: LogConfig = Field(
        default_factory=LogConfig, description="Logging configuration"
    )

    # Observability configuration
    observability_config: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig, description="Observability configuration"
    )

    def model_post_init(self, __context: object) -> None:
        """Post initialization to apply environment-based defaults."""
        super().model_post_init(__context)

        if self.log_config.log_formatter_type is None:
            self.log_config.log_formatter_type = self._detect_formatter()

        # Conventional collector variables fill in what nested config left unset
        observability = self.observability_config
        if observability.trace_endpoint is None:
            observability.trace_endpoint = os.getenv(TRACE_ENDPOINT_ENV) or None
        if observability.metrics_endpoint is None:
            observability.metrics_endpoint = (
                os.getenv(METRICS_ENDPOINT_ENV) or STDOUT_ENDPOINT
            )

    def _detect_formatter(self) -> Literal["console", "json"]:
        """Auto-detect log formatter based on environment."""
        if self.environment == "development":
            return "console"
        return "json"

    @field_validator("docs_url", "redoc_url", "openapi_url", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: str | None) -> str | None:
        """Convert empty strings to None for nullable fields."""
        _ = cls
        if v == "":
            return None
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
