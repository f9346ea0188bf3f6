"""Telemetry engine: wires the live path, the poll path and the store.

This is the core business logic entry point. It depends on the
LiveTransport and PollClient protocols, not concrete implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import structlog

from acquasync.core.alerts import AlertThresholds
from acquasync.core.decoder import MessageRouter
from acquasync.core.models import ConnectionState, DecodedMessage, MessageKind, Origin
from acquasync.core.poller import PollFallbackSource
from acquasync.core.stats import EngineStats
from acquasync.core.store import ReconciliationStore, StoreView
from acquasync.core.supervisor import ConnectionSupervisor, Sleep

if TYPE_CHECKING:
    from acquasync.config import AppConfig
    from acquasync.poll.base import PollClient
    from acquasync.transport.base import LiveTransport

log = structlog.get_logger()

PUMP_ACTIONS = ("on", "off", "auto")


class TelemetryEngine:
    """Owns one supervisor, router, store and poller, and their lifecycle."""

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        router: MessageRouter,
        store: ReconciliationStore,
        poller: PollFallbackSource,
        stats: EngineStats,
    ) -> None:
        self.supervisor = supervisor
        self.router = router
        self.store = store
        self.poller = poller
        self.stats = stats

        router.on_message(self._dispatch)
        supervisor.on_frame(router.route)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        transport: LiveTransport,
        poll_client: PollClient,
        *,
        sleep: Sleep | None = None,
    ) -> TelemetryEngine:
        stats = EngineStats(silent_after_seconds=config.live.silent_after_seconds)
        thresholds = AlertThresholds(
            min_water_level=config.alerts.min_water_level,
            min_efficiency=config.alerts.min_efficiency,
            max_current=config.alerts.max_current,
            max_vibration=config.alerts.max_vibration,
        )
        store = ReconciliationStore(
            thresholds,
            freshness_window_seconds=config.store.freshness_window_seconds,
            max_alerts=config.store.max_alerts,
            max_notices=config.store.max_notices,
            history_points=config.store.history_points,
            stats=stats,
        )
        sleep_kwargs = {"sleep": sleep} if sleep is not None else {}
        supervisor = ConnectionSupervisor(
            transport,
            config.live_url(),
            base_ms=config.live.backoff_base_ms,
            cap_ms=config.live.backoff_cap_ms,
            max_attempts=config.live.max_attempts,
            stats=stats,
            **sleep_kwargs,
        )
        poller = PollFallbackSource(
            poll_client,
            store,
            interval_seconds=config.poll.interval_seconds,
            latest_path=config.poll.latest_path,
            history_path=config.poll.history_path,
            config_path=config.poll.config_path,
            history_window=config.poll.history_window,
            alerts_path=config.poll.alerts_path,
            alerts_interval_seconds=config.poll.alerts_interval_seconds,
            ack_path=config.poll.ack_path,
            stats=stats,
            live_silent=stats.live_silent,
            **sleep_kwargs,
        )
        return cls(supervisor, MessageRouter(stats), store, poller, stats)

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Open the live connection and start polling."""
        log.info("engine_starting", url=self.supervisor.url)
        await self.supervisor.connect()
        self.poller.start()

    async def stop(self) -> None:
        """Stop polling and close the live connection. ``start`` may be called again."""
        await self.poller.stop()
        await self.supervisor.disconnect()
        log.info("engine_stopped")

    async def close(self) -> None:
        """Final teardown."""
        await self.stop()
        await self.supervisor.dispose()

    # -- commands ----------------------------------------------------------

    async def send_command(self, action: str) -> bool:
        """Send a pump command over the live channel.

        Fire-and-forget: the outcome shows up in the next pumpStatus or
        sensor update. Returns False when the frame could not be written.
        """
        if action not in PUMP_ACTIONS:
            raise ValueError(f"unknown pump action {action!r}, expected one of {PUMP_ACTIONS}")
        sent = await self.supervisor.send({"type": "controlPump", "action": action})
        self.stats.record_command(sent)
        log.info("pump_command", action=action, sent=sent)
        return sent

    async def reconnect(self) -> None:
        await self.supervisor.reconnect_now()

    async def acknowledge_alert(self, alert_id: str) -> bool:
        """Acknowledge a server alert. Raises PollError if the backend refused it."""
        return await self.poller.acknowledge_alert(alert_id)

    # -- output surface ----------------------------------------------------

    def subscribe(self, callback: Callable[[StoreView], None]) -> Callable[[], None]:
        return self.store.subscribe(callback)

    def add_connection_observer(self, observer: Callable[[ConnectionState, ConnectionState], None]) -> None:
        self.supervisor.add_observer(observer)

    def status(self) -> dict:
        """The full output surface as a JSON-ready dict."""
        view = self.store.view()
        sup = self.supervisor
        return {
            "connection": {
                "state": sup.state.value,
                "unreachable": sup.unreachable,
                "attempt": sup.attempt,
                "reconnect_pending": sup.reconnect_pending,
                "last_error": str(sup.last_error) if sup.last_error else None,
                "live_silent": self.poller.live_silent,
            },
            "source_healthy": self.poller.source_healthy,
            "snapshot": view.snapshot.to_dict() if view.snapshot else None,
            "origin": view.origin.value if view.origin else None,
            "alerts": [a.to_dict() for a in view.alerts],
            "config": view.config.to_dict(),
            "notices": [n.to_dict() for n in view.notices],
        }

    def _dispatch(self, message: DecodedMessage) -> None:
        kind = message.kind
        if kind is MessageKind.SENSOR_DATA:
            self.store.apply_sensor_update(message.payload, Origin.PUSH)
        elif kind in (MessageKind.PUMP_STATUS, MessageKind.SYSTEM_CONFIG):
            self.store.apply_config_update(message.payload)
        elif kind is MessageKind.SYSTEM_ALERT:
            self.store.apply_notice(message.payload)
            log.info("server_notice", message=message.payload.message)
        elif kind is MessageKind.HELLO:
            self.store.note_server_hello(message.payload.ts_ms)
            log.debug("server_hello", ts=message.payload.ts_ms)
