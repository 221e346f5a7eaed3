"""Levy - sales-tax HTTP service with built-in telemetry.

Architecture Overview:
- **API Layer**: FastAPI application, instrumented handlers and middleware
- **Core Layer**: Configuration, logging, errors, metrics and tracing pipelines

Every instrumented handler is served behind a tracing middleware and a
metrics middleware that share one process-wide tracing provider and one
metrics registry, both created at startup and flushed on shutdown.
"""
