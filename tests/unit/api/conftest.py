"""Shared fixtures for API unit tests.

Middlewares are exercised as plain ASGI callables: ``http_scope`` builds a
request scope, ``receive`` replays a body and ``sent`` collects every
message the app sends.
"""

from collections.abc import Callable

import pytest
from starlette.types import Message, Receive, Scope, Send


@pytest.fixture
def http_scope() -> Callable[..., Scope]:
    """Factory for HTTP request scopes."""

    def _create(
        method: str = "POST",
        path: str = "/salestax",
        headers: list[tuple[bytes, bytes]] | None = None,
        query_string: bytes = b"",
    ) -> Scope:
        return {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "server": ("testserver", 80),
            "client": ("127.0.0.1", 50000),
            "root_path": "",
            "path": path,
            "raw_path": path.encode(),
            "query_string": query_string,
            "headers": headers or [],
        }

    return _create


@pytest.fixture
def receive() -> Receive:
    """Receive callable delivering a single empty body."""

    async def _receive() -> Message:
        return {"type": "http.request", "body": b"", "more_body": False}

    return _receive


@pytest.fixture
def sent() -> list[Message]:
    """Collect messages sent by the app under test."""
    return []


@pytest.fixture
def send(sent: list[Message]) -> Send:
    """Send callable appending to ``sent``."""

    async def _send(message: Message) -> None:
        sent.append(message)

    return _send
