"""HTTP API layer of the Levy service.

Key components:
- **main**: Application factory, handler instrumentation and lifecycle
- **handlers**: Business handlers served as plain ASGI apps
  - Sales-tax calculation
- **middleware**: Per-handler telemetry and global error handling
  - Tracing middleware creating a server span per request
  - Observability middleware recording request metrics
  - Exception handlers producing consistent error responses
- **schemas**: Pydantic request, response and error models
- **utils**: orjson-based JSON responses
"""
