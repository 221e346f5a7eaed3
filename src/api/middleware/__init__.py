"""ASGI middleware for the Levy API.

- **TracingMiddleware**: Server span per request, W3C context propagation
- **ObservabilityMiddleware**: Request count, duration, size and in-flight gauge
- **ResponseCapture**: ``send`` proxy shared by both to observe the response
- **ErrorHandler**: Exception handlers answering with ``ErrorResponse``

Instrumented handlers are wrapped tracing-outermost, so metrics and error
events recorded by the handler attach to the request span:

    TracingMiddleware(ObservabilityMiddleware(handler))
"""
