"""Per-handler request metrics.

``ObservabilityMiddleware`` wraps a single handler and records, for every
request it serves:

- ``http.active_connections``: +1 on entry, -1 on exit
- ``http.requests.total``: tagged by handler, method and status
- ``http.request.duration``: seconds, tagged by handler and method
- ``http.response.size``: body bytes written, tagged by handler

The exit bookkeeping runs in a ``finally`` block, so it happens exactly once
whether the handler returns normally, returns early with an error response,
or raises. Recording never raises into the request path.
"""

import time

from loguru import logger
from starlette.types import ASGIApp, Receive, Scope, Send

from src.api.middleware.response_capture import ResponseCapture
from src.core.constants import MILLISECONDS_PER_SECOND
from src.core.metrics import MetricsRegistry


class ObservabilityMiddleware:
    """ASGI middleware recording request metrics for one handler.

    Args:
        app: The downstream handler.
        handler_name: Value of the ``handler`` attribute on every metric.
        registry: Shared metrics registry.
        slow_request_threshold_ms: Requests slower than this are logged as
            warnings.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        handler_name: str,
        registry: MetricsRegistry,
        slow_request_threshold_ms: int = 1000,
    ) -> None:
        self.app = app
        self.handler_name = handler_name
        self.registry = registry
        self.slow_request_threshold_ms = slow_request_threshold_ms

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Serve the request and record its metrics."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        capture = ResponseCapture(send)

        self.registry.connection_opened()
        start_time = time.perf_counter()
        try:
            await self.app(scope, receive, capture)
        except BaseException:
            capture.mark_failed()
            raise
        finally:
            duration = time.perf_counter() - start_time
            self.registry.connection_closed()
            self.registry.record_request(
                self.handler_name,
                method,
                capture.status_code,
                duration,
                capture.bytes_written,
            )
            self._log_completion(method, capture, duration)

    def _log_completion(
        self, method: str, capture: ResponseCapture, duration: float
    ) -> None:
        duration_ms = round(duration * MILLISECONDS_PER_SECOND, 2)
        logger.debug(
            "Request completed",
            handler=self.handler_name,
            method=method,
            status_code=capture.status_code,
            duration_ms=duration_ms,
            response_size=capture.bytes_written,
        )
        if duration_ms > self.slow_request_threshold_ms:
            logger.warning(
                "Slow request detected",
                handler=self.handler_name,
                duration_ms=duration_ms,
                threshold_ms=self.slow_request_threshold_ms,
            )


def record_error(registry: MetricsRegistry, handler_name: str, error_kind: str) -> None:
    """Record a handler-specific error event.

    Increments ``http.errors.total`` tagged by handler and error kind and
    marks the current span. Never raises.

    Args:
        registry: Shared metrics registry.
        handler_name: Name of the handler reporting the error.
        error_kind: Short machine-readable error kind.
    """
    registry.record_error(handler_name, error_kind)
