"""Live transport interface (port) for the push channel."""

from __future__ import annotations

from typing import AsyncIterator, Protocol


class LiveConnection(Protocol):
    """Port: one open bidirectional message channel.

    Iterating yields inbound frames in arrival order and ends when the peer
    closes cleanly; an abnormal close raises TransportError.
    """

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def send(self, text: str) -> None: ...

    async def close(self) -> None: ...


class LiveTransport(Protocol):
    """Port: opens live connections. Raises TransportError on failure."""

    async def open(self, url: str) -> LiveConnection: ...
