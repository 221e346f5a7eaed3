"""Unit tests for src.api.middleware.tracing module."""

from collections.abc import Callable

import pytest
from loguru import logger
from opentelemetry import trace
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)
from opentelemetry.trace import SpanKind, StatusCode
from pytest_mock import MockerFixture
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.api.middleware.tracing import (
    HTTP_METHOD,
    HTTP_ROUTE,
    HTTP_STATUS_CODE,
    HTTP_TARGET,
    HTTP_URL,
    TracingMiddleware,
    TraceparentFormat,
    format_traceparent,
)
from src.core.observability import TracingProvider
from tests.helpers import raise_error, respond_with

PARENT_TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
PARENT_SPAN_ID = "00f067aa0ba902b7"
PARENT_TRACEPARENT = f"00-{PARENT_TRACE_ID}-{PARENT_SPAN_ID}-01"


def _middleware(
    app: ASGIApp,
    tracing: TracingProvider,
    traceparent_format: TraceparentFormat = "w3c",
) -> TracingMiddleware:
    return TracingMiddleware(
        app,
        handler_name="salestax",
        tracing=tracing,
        traceparent_format=traceparent_format,
    )


def _response_headers(sent: list[Message]) -> Headers:
    return Headers(raw=sent[0]["headers"])


@pytest.mark.unit
class TestTracingMiddleware:
    """Test the server span created around a handler."""

    async def test_new_root_span_without_traceparent(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
    ) -> None:
        """Test a request without trace headers starts a new trace."""
        await _middleware(respond_with(200), tracing_provider)(
            http_scope(query_string=b"debug=1"), receive, send
        )

        [span] = span_exporter.get_finished_spans()
        assert span.name == "salestax"
        assert span.kind == SpanKind.SERVER
        assert span.parent is None
        assert span.attributes[HTTP_METHOD] == "POST"
        assert span.attributes[HTTP_ROUTE] == "/salestax"
        assert span.attributes[HTTP_TARGET] == "/salestax?debug=1"
        assert span.attributes[HTTP_URL] == "http://testserver/salestax?debug=1"
        assert span.attributes[HTTP_STATUS_CODE] == 200
        assert span.attributes["handler"] == "salestax"
        assert span.status.status_code == StatusCode.OK

    async def test_child_of_inbound_traceparent(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
    ) -> None:
        """Test a W3C traceparent header makes the span a child of the caller."""
        scope = http_scope(headers=[(b"traceparent", PARENT_TRACEPARENT.encode())])

        await _middleware(respond_with(200), tracing_provider)(scope, receive, send)

        [span] = span_exporter.get_finished_spans()
        assert trace.format_trace_id(span.context.trace_id) == PARENT_TRACE_ID
        assert span.parent is not None
        assert trace.format_span_id(span.parent.span_id) == PARENT_SPAN_ID
        assert span.parent.is_remote is True

    @pytest.mark.parametrize(
        ("status_code", "description"),
        [
            (400, "Bad Request"),
            (405, "Method Not Allowed"),
            (500, "Internal Server Error"),
        ],
    )
    async def test_error_status_for_4xx_and_5xx(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
        status_code: int,
        description: str,
    ) -> None:
        """Test error responses mark the span ERROR with the reason phrase."""
        await _middleware(respond_with(status_code), tracing_provider)(
            http_scope(), receive, send
        )

        [span] = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == description
        assert span.attributes[HTTP_STATUS_CODE] == status_code

    async def test_raising_handler_records_exception(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
    ) -> None:
        """Test an exception ends the span as a 500 with an exception event."""
        with pytest.raises(ValueError, match="bad"):
            await _middleware(raise_error(ValueError("bad")), tracing_provider)(
                http_scope(), receive, send
            )

        [span] = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes[HTTP_STATUS_CODE] == 500
        assert [event.name for event in span.events] == ["exception"]

    async def test_w3c_traceparent_response_header(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
        sent: list[Message],
    ) -> None:
        """Test the response carries the request span as a W3C traceparent."""
        await _middleware(respond_with(200), tracing_provider)(
            http_scope(), receive, send
        )

        [span] = span_exporter.get_finished_spans()
        expected = (
            f"00-{trace.format_trace_id(span.context.trace_id)}"
            f"-{trace.format_span_id(span.context.span_id)}-01"
        )
        headers = _response_headers(sent)
        assert headers["traceparent"] == expected
        assert headers["content-type"] == "application/json"

    async def test_trace_id_response_header(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
        sent: list[Message],
    ) -> None:
        """Test the bare trace ID can be sent instead of a full traceparent."""
        await _middleware(respond_with(200), tracing_provider, "trace_id")(
            http_scope(), receive, send
        )

        [span] = span_exporter.get_finished_spans()
        assert _response_headers(sent)["traceparent"] == trace.format_trace_id(
            span.context.trace_id
        )

    async def test_handler_runs_inside_span(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
    ) -> None:
        """Test the span is current and log context is set while handling."""
        seen: dict[str, object] = {}

        async def app(scope: Scope, receive: Receive, send: Send) -> None:
            seen["span"] = trace.get_current_span()
            logger.info("handling")
            await respond_with(200)(scope, receive, send)

        sink_id = logger.add(
            lambda message: seen.update(message.record["extra"]), level="INFO"
        )
        try:
            await _middleware(app, tracing_provider)(http_scope(), receive, send)
        finally:
            logger.remove(sink_id)

        [span] = span_exporter.get_finished_spans()
        assert seen["span"].get_span_context() == span.context
        assert seen["trace_id"] == trace.format_trace_id(span.context.trace_id)
        assert seen["span_id"] == trace.format_span_id(span.context.span_id)

    async def test_tracing_disabled(
        self,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
        sent: list[Message],
    ) -> None:
        """Test requests are served without a traceparent while tracing is off."""
        tracing = TracingProvider("svc", "1.0.0", "development")

        await _middleware(respond_with(200), tracing)(http_scope(), receive, send)

        assert sent[0]["status"] == 200
        assert "traceparent" not in _response_headers(sent)

    async def test_header_injection_failure_is_swallowed(
        self,
        tracing_provider: TracingProvider,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
        sent: list[Message],
        mocker: MockerFixture,
    ) -> None:
        """Test a failing header injection never breaks the response."""
        mocker.patch(
            "src.api.middleware.tracing.format_traceparent",
            side_effect=RuntimeError("propagator broken"),
        )
        mock_logger = mocker.patch("src.api.middleware.tracing.logger")

        await _middleware(respond_with(200), tracing_provider)(
            http_scope(), receive, send
        )

        assert sent[0]["status"] == 200
        mock_logger.opt.return_value.warning.assert_called_once()

    async def test_trace_context_stored_in_request_state(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
    ) -> None:
        """Test the trace stays reachable from the scope after the span ends."""
        scope = http_scope()

        with pytest.raises(RuntimeError):
            await _middleware(raise_error(RuntimeError("boom")), tracing_provider)(
                scope, receive, send
            )

        [span] = span_exporter.get_finished_spans()
        trace_id = trace.format_trace_id(span.context.trace_id)
        span_id = trace.format_span_id(span.context.span_id)
        assert scope["state"]["trace_id"] == trace_id
        assert scope["state"]["traceparent"] == f"00-{trace_id}-{span_id}-01"

    async def test_disabled_tracing_leaves_state_untouched(
        self,
        http_scope: Callable[..., Scope],
        receive: Receive,
        send: Send,
    ) -> None:
        """Test no trace context is stored without a recording span."""
        tracing = TracingProvider("svc", "1.0.0", "development")
        scope = http_scope()

        await _middleware(respond_with(200), tracing)(scope, receive, send)

        assert "state" not in scope

    async def test_non_http_scope_passes_through(
        self,
        tracing_provider: TracingProvider,
        span_exporter: InMemorySpanExporter,
        receive: Receive,
        send: Send,
        mocker: MockerFixture,
    ) -> None:
        """Test non-HTTP scopes are not traced."""
        app = mocker.AsyncMock()
        scope = {"type": "lifespan"}

        await _middleware(app, tracing_provider)(scope, receive, send)

        app.assert_awaited_once_with(scope, receive, send)
        assert span_exporter.get_finished_spans() == ()


@pytest.mark.unit
class TestFormatTraceparent:
    """Test response header formatting."""

    def test_invalid_span_has_no_header(self) -> None:
        """Test non-recording spans yield no header."""
        assert format_traceparent(trace.INVALID_SPAN, "w3c") is None
        assert format_traceparent(trace.INVALID_SPAN, "trace_id") is None
