"""
Downstream Sinks

A downstream sink is where the relay writes token text for the caller.
Response headers are committed lazily by the first write, which is what
lets the relay still answer with a plain error status when it fails before
producing any output.
"""

import asyncio
from typing import Protocol, runtime_checkable

from starlette.types import Send

from genai_relay.core.config.constants import STREAM_HEADERS, STREAM_MEDIA_TYPE
from genai_relay.core.exceptions import DownstreamWriteError
from genai_relay.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class DownstreamSink(Protocol):
    """Write side of one response stream."""

    @property
    def started(self) -> bool:
        """True once any byte (and therefore the status line) has been sent."""
        ...

    async def write(self, text: str) -> None:
        """
        Send ``text`` to the caller immediately.

        Raises:
            DownstreamWriteError: the caller can no longer be written to
        """
        ...


class AsgiDownstreamSink:
    """
    DownstreamSink over a raw ASGI ``send`` callable.

    Each write becomes one ``http.response.body`` message with
    ``more_body=True``; the server forwards it as a chunk right away, so no
    token waits behind another. ``complete`` ends the exchange: it closes
    the body of a started stream, or sends a bodiless status when nothing
    was written yet.
    """

    def __init__(self, send: Send, headers: dict[str, str] | None = None):
        self._send = send
        self._headers = {**STREAM_HEADERS, **(headers or {})}
        self._started = False
        self._completed = False
        self._broken = False
        self._started_event = asyncio.Event()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def completed(self) -> bool:
        return self._completed

    async def wait_started(self) -> None:
        """Block until the first byte has been sent."""
        await self._started_event.wait()

    def mark_broken(self) -> None:
        """Refuse all further writes, e.g. after the client disconnected."""
        self._broken = True

    def _raw_headers(self, content_type: str | None) -> list[tuple[bytes, bytes]]:
        headers = dict(self._headers)
        if content_type:
            headers["Content-Type"] = content_type
        return [(name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in headers.items()]

    async def _start(self, status: int, content_type: str | None) -> None:
        await self._send(
            {"type": "http.response.start", "status": status, "headers": self._raw_headers(content_type)}
        )
        self._started = True
        self._started_event.set()

    async def write(self, text: str) -> None:
        if self._broken or self._completed:
            raise DownstreamWriteError("Downstream is closed")
        try:
            if not self._started:
                await self._start(200, STREAM_MEDIA_TYPE)
            await self._send({"type": "http.response.body", "body": text.encode("utf-8"), "more_body": True})
        except (OSError, RuntimeError) as exc:
            self._broken = True
            raise DownstreamWriteError.from_exception(exc, message="Downstream write failed") from exc

    async def complete(self, status: int | None = 200, extra_headers: dict[str, str] | None = None) -> None:
        """
        Finish the response.

        Args:
            status: status to send if nothing was written yet; None when the
                caller is gone and nothing should be sent at all
            extra_headers: additional headers for a not-yet-started response
        """
        if self._completed:
            return
        self._completed = True
        if self._broken or (status is None and not self._started):
            return

        try:
            if not self._started:
                if extra_headers:
                    self._headers.update(extra_headers)
                self._headers["Content-Length"] = "0"
                content_type = STREAM_MEDIA_TYPE if status == 200 else None
                await self._start(status, content_type)
            await self._send({"type": "http.response.body", "body": b"", "more_body": False})
        except (OSError, RuntimeError) as exc:
            logger.debug("Could not complete downstream response", error=str(exc))
