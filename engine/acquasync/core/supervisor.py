"""Connection supervisor. Owns the live connection and its recovery.

State machine::

    DISCONNECTED --connect()--> CONNECTING --opened--> CONNECTED
    CONNECTING/CONNECTED --closed or failed--> DISCONNECTED (+ reconnect)
    CONNECTED --disconnect()--> CLOSING --> DISCONNECTED (no reconnect)

Reconnects run as a single cancellable asyncio task that sleeps for
``min(cap_ms, base_ms * 2**attempt)`` and then calls ``connect()``. After
``max_attempts`` consecutive failed cycles nothing more is scheduled and
``unreachable`` stays set until ``reconnect_now()``.

The transport and the sleep function are injected, so the whole machine can
be driven in tests without sockets or wall-clock waits.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import TYPE_CHECKING, Awaitable, Callable

import structlog

from acquasync.core.errors import AcquaSyncError, ExhaustedRetries, TransportError
from acquasync.core.models import ConnectionState, ReconnectState

if TYPE_CHECKING:
    from acquasync.core.stats import EngineStats
    from acquasync.transport.base import LiveConnection, LiveTransport

log = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]
StateObserver = Callable[[ConnectionState, ConnectionState], None]
FrameSink = Callable[[str | bytes], None]


class ConnectionSupervisor:
    """One logical live connection with automatic, bounded recovery."""

    def __init__(
        self,
        transport: LiveTransport,
        url: str,
        *,
        base_ms: int = 1000,
        cap_ms: int = 15000,
        max_attempts: int = 10,
        stats: EngineStats | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._url = url
        self._stats = stats
        self._sleep = sleep
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._reconnect = ReconnectState(base_ms=base_ms, cap_ms=cap_ms, max_attempts=max_attempts)
        self._conn: LiveConnection | None = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._manual_close = False
        self._unreachable = False
        self._generation = 0
        self.last_error: AcquaSyncError | None = None

        self._observers: list[StateObserver] = []
        self._on_connected: Callable[[], None] | None = None
        self._on_closed: Callable[[], None] | None = None
        self._on_unreachable: Callable[[], None] | None = None
        self._frame_sink: FrameSink | None = None

    # -- observation -------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def unreachable(self) -> bool:
        return self._unreachable

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def attempt(self) -> int:
        return self._reconnect.attempt

    def add_observer(self, observer: StateObserver) -> None:
        """Called with (old, new) once per state transition."""
        self._observers.append(observer)

    def on_frame(self, sink: FrameSink | None) -> None:
        self._frame_sink = sink

    def on_close(self, callback: Callable[[], None] | None) -> None:
        self._on_closed = callback

    def on_unreachable(self, callback: Callable[[], None] | None) -> None:
        self._on_unreachable = callback

    # -- lifecycle ---------------------------------------------------------

    async def connect(self, on_connected: Callable[[], None] | None = None) -> None:
        """Open the live connection unless one is open or opening."""
        if on_connected is not None:
            self._on_connected = on_connected
        if self._state is not ConnectionState.DISCONNECTED:
            return

        self._manual_close = False
        self._generation += 1
        generation = self._generation
        self._cancel_reconnect()
        self._set_state(ConnectionState.CONNECTING)
        log.info("live_connecting", url=self._url, attempt=self._reconnect.attempt)

        try:
            conn = await self._transport.open(self._url)
        except (TransportError, OSError) as exc:
            log.warning("live_connect_failed", url=self._url, error=str(exc))
            self.last_error = exc if isinstance(exc, TransportError) else TransportError(str(exc))
            if generation == self._generation:
                self._handle_closed(None)
            return

        if generation != self._generation or self._state is not ConnectionState.CONNECTING:
            # disconnect() ran while the transport was opening
            log.info("live_connect_abandoned", url=self._url)
            await self._close_quietly(conn)
            return

        self._conn = conn
        self._reconnect.reset()
        self._unreachable = False
        self.last_error = None
        self._set_state(ConnectionState.CONNECTED)
        log.info("live_connected", url=self._url)

        await self._send_hello()
        if generation != self._generation or self._conn is not conn:
            # disconnect() ran while the hello was being written
            log.info("live_connect_abandoned", url=self._url)
            return
        self._reader = asyncio.create_task(self._read_loop(conn))

    async def disconnect(self) -> None:
        """Close the connection and suppress any automatic reconnect."""
        self._manual_close = True
        self._generation += 1
        self._cancel_reconnect()

        conn, reader = self._conn, self._reader
        self._conn = None
        self._reader = None
        if conn is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self._set_state(ConnectionState.CLOSING)
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        await self._close_quietly(conn)
        self._set_state(ConnectionState.DISCONNECTED)
        log.info("live_disconnected", url=self._url)

    async def reconnect_now(self) -> None:
        """Manual retry: forget previous failures and connect."""
        log.info("live_manual_reconnect", url=self._url, unreachable=self._unreachable)
        self._cancel_reconnect()
        self._reconnect.reset()
        self._unreachable = False
        self.last_error = None
        await self.connect()

    async def dispose(self) -> None:
        """End of lifecycle: close everything and drop all callbacks."""
        await self.disconnect()
        self._observers.clear()
        self._on_connected = None
        self._on_closed = None
        self._on_unreachable = None
        self._frame_sink = None

    async def send(self, frame: dict) -> bool:
        """Fire-and-forget JSON frame. Returns False if it could not be written."""
        conn = self._conn
        if conn is None or self._state is not ConnectionState.CONNECTED:
            log.warning("send_dropped", type=frame.get("type"), state=self._state.value)
            return False
        try:
            await conn.send(json.dumps(frame))
        except TransportError as exc:
            log.warning("send_failed", type=frame.get("type"), error=str(exc))
            return False
        return True

    # -- internals ---------------------------------------------------------

    async def _send_hello(self) -> None:
        await self.send({"type": "hello", "ts": int(self._clock() * 1000)})

    async def _read_loop(self, conn: LiveConnection) -> None:
        try:
            async for raw in conn:
                self._deliver(raw)
        except TransportError as exc:
            log.warning("live_connection_lost", url=self._url, error=str(exc))
            self.last_error = exc
        except Exception:
            log.error("live_reader_failed", url=self._url, exc_info=True)
        else:
            log.info("live_connection_closed", url=self._url)
        self._handle_closed(conn)

    def _deliver(self, raw: str | bytes) -> None:
        if self._frame_sink is None:
            return
        try:
            self._frame_sink(raw)
        except Exception:
            log.error("frame_handler_failed", exc_info=True)

    def _handle_closed(self, conn: LiveConnection | None) -> None:
        if conn is not None and conn is not self._conn:
            return  # a connection we already replaced or dropped
        self._conn = None
        self._reader = None
        self._set_state(ConnectionState.DISCONNECTED)
        if not self._manual_close:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        if self._reconnect.exhausted:
            self._unreachable = True
            self.last_error = ExhaustedRetries(self._reconnect.attempt)
            log.error("live_unreachable", url=self._url, attempts=self._reconnect.attempt)
            self._call(self._on_unreachable)
            return

        delay_ms = self._reconnect.advance()
        if self._stats is not None:
            self._stats.record_reconnect_scheduled()
        log.info("reconnect_scheduled", attempt=self._reconnect.attempt,
                 max_attempts=self._reconnect.max_attempts, delay_ms=delay_ms)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay_ms))

    async def _reconnect_after(self, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000)
        self._reconnect_task = None
        await self.connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            log.debug("reconnect_cancelled")

    async def _close_quietly(self, conn: LiveConnection) -> None:
        try:
            await conn.close()
        except (TransportError, OSError) as exc:
            log.debug("live_close_error", error=str(exc))

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        log.debug("connection_state_changed", old=old.value, new=new.value)

        if self._stats is not None:
            if new is ConnectionState.CONNECTED:
                self._stats.record_connected()
            elif new is ConnectionState.DISCONNECTED:
                self._stats.record_disconnected()

        for observer in list(self._observers):
            try:
                observer(old, new)
            except Exception:
                log.error("state_observer_failed", exc_info=True)

        if new is ConnectionState.CONNECTED:
            self._call(self._on_connected)
        elif new is ConnectionState.DISCONNECTED:
            self._call(self._on_closed)

    def _call(self, callback: Callable[[], None] | None) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            log.error("supervisor_callback_failed", exc_info=True)
