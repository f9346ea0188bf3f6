"""Websocket implementation of LiveTransport, backed by the ``websockets`` library."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from acquasync.core.errors import TransportError

log = structlog.get_logger()


class WebSocketConnection:
    """LiveConnection over one websocket."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    async def _frames(self) -> AsyncIterator[str | bytes]:
        try:
            async for message in self._ws:
                yield message
        except ConnectionClosedError as exc:
            raise TransportError(f"connection closed abnormally: {exc}") from exc

    def __aiter__(self) -> AsyncIterator[str | bytes]:
        return self._frames()

    async def send(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except ConnectionClosed as exc:
            raise TransportError(f"send on closed connection: {exc}") from exc

    async def close(self) -> None:
        await self._ws.close()


class WebSocketTransport:
    """LiveTransport that dials a websocket endpoint.

    Protocol-level keep-alive pings are handled by ``websockets`` itself;
    application ``ping`` frames from the backend are dropped by the router.
    """

    def __init__(self, open_timeout: float = 10.0, ping_interval: float | None = 20.0) -> None:
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval

    async def open(self, url: str) -> WebSocketConnection:
        try:
            ws = await connect(url, open_timeout=self._open_timeout,
                               ping_interval=self._ping_interval)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise TransportError(f"cannot open {url}: {exc}") from exc
        log.debug("websocket_opened", url=url)
        return WebSocketConnection(ws)
