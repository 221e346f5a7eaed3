"""Observe what a downstream ASGI app sends without altering it."""

from collections.abc import Callable

from starlette import status
from starlette.types import Message, Send


class ResponseCapture:
    """Proxy for the ASGI ``send`` callable that records the response.

    The status code defaults to 200 until an ``http.response.start`` message
    is seen. Body bytes are counted across all ``http.response.body``
    messages. Messages are forwarded unchanged, except that ``on_start`` may
    add headers to the response start message before it is sent.

    Args:
        send: The downstream ``send`` callable.
        on_start: Optional hook run on the response start message.
    """

    def __init__(
        self,
        send: Send,
        on_start: Callable[[Message], None] | None = None,
    ) -> None:
        self._send = send
        self._on_start = on_start
        self.status_code = status.HTTP_200_OK
        self.bytes_written = 0
        self.started = False

    async def __call__(self, message: Message) -> None:
        """Record the message and forward it to the real ``send``."""
        message_type = message["type"]
        if message_type == "http.response.start":
            self.started = True
            self.status_code = message["status"]
            if self._on_start is not None:
                self._on_start(message)
        elif message_type == "http.response.body":
            self.bytes_written += len(message.get("body", b""))

        await self._send(message)

    def mark_failed(self) -> None:
        """Record a failure raised before any response was started."""
        if not self.started:
            self.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
