"""Per-handler request tracing.

``TracingMiddleware`` wraps a single handler in a server span:

1. The inbound trace context is extracted from the request headers with the
   globally configured propagator (W3C ``traceparent`` by default), so the
   span joins the caller's trace. Without headers a new root trace starts.
2. The span is current while the handler runs, so nested spans and error
   events recorded by the handler attach to it. Loguru records emitted
   meanwhile carry ``trace_id`` and ``span_id``.
3. A ``traceparent`` header is added to the response before it is sent. The
   trace ID and traceparent are also stored in the request state so the
   application exception handlers can report them for unhandled errors.
4. When the handler returns, the span gets the final HTTP status and an
   ``ERROR`` status for codes >= 400, ``OK`` otherwise. The span always ends.
"""

from http import HTTPStatus
from typing import Final, Literal, TypeAlias

from loguru import logger
from opentelemetry import propagate, trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from starlette import status
from starlette.datastructures import URL, Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.api.middleware.response_capture import ResponseCapture
from src.core.exceptions import SinkExportError
from src.core.observability import TracingProvider

TRACEPARENT_HEADER: Final[str] = "traceparent"

# Request state keys read by the exception handlers, which run after the
# request span has ended
TRACE_ID_STATE_KEY: Final[str] = "trace_id"
TRACEPARENT_STATE_KEY: Final[str] = "traceparent"

# HTTP span attribute keys (OpenTelemetry semantic conventions v1.21)
HTTP_METHOD: Final[str] = "http.method"
HTTP_ROUTE: Final[str] = "http.route"
HTTP_TARGET: Final[str] = "http.target"
HTTP_URL: Final[str] = "http.url"
HTTP_STATUS_CODE: Final[str] = "http.status_code"
HANDLER: Final[str] = "handler"

TraceparentFormat: TypeAlias = Literal["w3c", "trace_id"]

_w3c_propagator = TraceContextTextMapPropagator()


def format_traceparent(span: Span, traceparent_format: TraceparentFormat) -> str | None:
    """Build the ``traceparent`` response header value for a span.

    Args:
        span: The request span.
        traceparent_format: ``"w3c"`` for a full traceparent string,
            ``"trace_id"`` for the bare 32-hex trace ID.

    Returns:
        str | None: The header value, or None if the span has no valid context.
    """
    span_context = span.get_span_context()
    if not span_context.is_valid:
        return None

    if traceparent_format == "trace_id":
        return trace.format_trace_id(span_context.trace_id)

    carrier: dict[str, str] = {}
    _w3c_propagator.inject(carrier, context=trace.set_span_in_context(span))
    return carrier.get(TRACEPARENT_HEADER)


def _status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return f"HTTP {status_code}"


class TracingMiddleware:
    """ASGI middleware tracing every request to one handler.

    Args:
        app: The downstream handler.
        handler_name: Span name and value of the ``handler`` attribute.
        tracing: Shared tracing provider.
        traceparent_format: Content of the ``traceparent`` response header.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        handler_name: str,
        tracing: TracingProvider,
        traceparent_format: TraceparentFormat = "w3c",
    ) -> None:
        self.app = app
        self.handler_name = handler_name
        self.tracing = tracing
        self.traceparent_format = traceparent_format

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Serve the request inside a server span."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        parent_context = propagate.extract(Headers(scope=scope))
        tracer = self.tracing.get_tracer()

        with tracer.start_as_current_span(
            self.handler_name,
            context=parent_context,
            kind=SpanKind.SERVER,
            attributes=self._request_attributes(scope),
            record_exception=True,
            set_status_on_exception=False,
        ) as span:
            span_context = span.get_span_context()
            traceparent = self._traceparent(span)
            if span_context.is_valid:
                state = scope.setdefault("state", {})
                state[TRACE_ID_STATE_KEY] = trace.format_trace_id(span_context.trace_id)
                if traceparent is not None:
                    state[TRACEPARENT_STATE_KEY] = traceparent

            capture = ResponseCapture(
                send,
                on_start=lambda message: self._inject_traceparent(traceparent, message),
            )
            with logger.contextualize(
                trace_id=trace.format_trace_id(span_context.trace_id),
                span_id=trace.format_span_id(span_context.span_id),
            ):
                try:
                    await self.app(scope, receive, capture)
                except BaseException:
                    capture.mark_failed()
                    raise
                finally:
                    self._finalize_span(span, capture.status_code)

    def _request_attributes(self, scope: Scope) -> dict[str, str]:
        path = scope["path"]
        query = scope.get("query_string", b"").decode("latin-1")
        return {
            HTTP_METHOD: scope["method"],
            HTTP_ROUTE: path,
            HTTP_TARGET: f"{path}?{query}" if query else path,
            HTTP_URL: str(URL(scope=scope)),
            HANDLER: self.handler_name,
        }

    def _traceparent(self, span: Span) -> str | None:
        try:
            return format_traceparent(span, self.traceparent_format)
        except Exception as e:
            error = SinkExportError("Failed to set traceparent header", cause=e)
            logger.opt(exception=e).warning("{}", error)
            return None

    @staticmethod
    def _inject_traceparent(traceparent: str | None, message: Message) -> None:
        if traceparent is not None:
            message.setdefault("headers", [])
            MutableHeaders(scope=message)[TRACEPARENT_HEADER] = traceparent

    @staticmethod
    def _finalize_span(span: Span, status_code: int) -> None:
        span.set_attribute(HTTP_STATUS_CODE, status_code)
        if status_code >= status.HTTP_400_BAD_REQUEST:
            span.set_status(Status(StatusCode.ERROR, _status_phrase(status_code)))
        else:
            span.set_status(Status(StatusCode.OK))
