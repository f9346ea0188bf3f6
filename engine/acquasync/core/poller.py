"""Periodic pull of the latest reading and config.

Runs on a fixed interval whatever the live connection is doing, so it both
covers for a dead live path and backs up a healthy one. A failed poll leaves
the store untouched and flips ``source_healthy``; the next success flips it
back.

The server alert feed is pulled on its own, slower cadence from the same
loop. Its failures are logged but do not count against source health.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Awaitable, Callable
from urllib.parse import quote

import structlog

from acquasync.core.decoder import (
    parse_alert_feed,
    parse_config_payload,
    parse_history_payload,
    parse_sensor_payload,
)
from acquasync.core.errors import DecodeError, PollError
from acquasync.core.models import HistoryPoint, Origin, SensorSnapshot, ServerNotice, SystemConfigUpdate

if TYPE_CHECKING:
    from acquasync.core.stats import EngineStats
    from acquasync.core.store import ReconciliationStore
    from acquasync.poll.base import PollClient

log = structlog.get_logger()


class PollFallbackSource:
    """Pulls from the backend's REST endpoints and feeds the store."""

    def __init__(
        self,
        client: PollClient,
        store: ReconciliationStore,
        *,
        interval_seconds: float = 5.0,
        latest_path: str = "/api/mqtt/sensor-data/latest",
        history_path: str = "/api/sensor-data/history",
        config_path: str = "/api/system-config",
        history_window: str = "6h",
        alerts_path: str = "/api/system-alerts",
        alerts_interval_seconds: float = 30.0,
        ack_path: str = "/api/alerts/acknowledge/{alert_id}",
        stats: EngineStats | None = None,
        live_silent: Callable[[], bool] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._store = store
        self._interval = interval_seconds
        self._latest_path = latest_path
        self._history_path = history_path
        self._config_path = config_path
        self._history_window = history_window
        self._alerts_path = alerts_path
        self._alerts_interval = alerts_interval_seconds
        self._ack_path = ack_path
        self._stats = stats
        self._live_silent_check = live_silent
        self._sleep = sleep
        self._clock = clock

        self._task: asyncio.Task | None = None
        self._healthy = True
        self._history_seeded = False
        self._alerts_polled_at: float | None = None
        self._live_silent = False
        self.last_error: Exception | None = None

    @property
    def source_healthy(self) -> bool:
        return self._healthy

    @property
    def live_silent(self) -> bool:
        return self._live_silent

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- single requests ---------------------------------------------------

    async def poll_latest(self) -> SensorSnapshot:
        body = await self._client.get_json(self._latest_path)
        try:
            return parse_sensor_payload(body)
        except DecodeError as exc:
            raise PollError(f"latest reading unusable: {exc.reason}") from exc

    async def poll_history(self, window: str | None = None) -> list[HistoryPoint]:
        body = await self._client.get_json(
            self._history_path, params={"window": window or self._history_window},
        )
        try:
            return parse_history_payload(body)
        except DecodeError as exc:
            raise PollError(f"history unusable: {exc.reason}") from exc

    async def poll_config(self) -> SystemConfigUpdate:
        body = await self._client.get_json(self._config_path)
        try:
            return parse_config_payload(body)
        except DecodeError as exc:
            raise PollError(f"config unusable: {exc.reason}") from exc

    async def poll_alerts(self) -> list[ServerNotice]:
        body = await self._client.get_json(self._alerts_path)
        try:
            return parse_alert_feed(body, int(time.time() * 1000))
        except DecodeError as exc:
            raise PollError(f"alert feed unusable: {exc.reason}") from exc

    async def acknowledge_alert(self, alert_id: str) -> bool:
        """Acknowledge a server alert upstream, then mark it locally.

        Raises PollError when the backend did not take it. Returns whether
        the store held a notice with that id.
        """
        await self._client.post_json(self._ack_path.format(alert_id=quote(alert_id, safe="")))
        log.info("alert_acknowledged", alert_id=alert_id)
        return self._store.acknowledge_notice(alert_id)

    # -- scheduled work ----------------------------------------------------

    async def tick(self) -> bool:
        """One poll cycle. Returns True when the latest reading and config were fetched."""
        self._check_live_path()
        if not self._history_seeded:
            await self._seed_history()
        if self._alerts_due():
            await self._refresh_alerts()
        try:
            snapshot = await self.poll_latest()
            self._store.apply_sensor_update(snapshot, Origin.POLL)
            if self._config_path:
                self._store.apply_config_update(await self.poll_config())
        except PollError as exc:
            self._mark_health(False, exc)
            return False
        self._mark_health(True)
        return True

    async def run(self) -> None:
        """Poll forever on the configured interval. Runs as a background task."""
        log.info("poller_started", interval_seconds=self._interval)
        while True:
            try:
                await self.tick()
            except Exception as exc:
                log.error("poll_cycle_failed", exc_info=True)
                self._mark_health(False, exc)
            await self._sleep(self._interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("poller_stopped")

    async def _seed_history(self) -> None:
        try:
            points = await self.poll_history()
        except PollError as exc:
            log.warning("history_seed_failed", error=str(exc))
            return
        self._store.seed_history(points)
        self._history_seeded = True
        log.info("history_seeded", points=len(points))

    def _alerts_due(self) -> bool:
        if not self._alerts_path:
            return False
        last = self._alerts_polled_at
        return last is None or self._clock() - last >= self._alerts_interval

    async def _refresh_alerts(self) -> None:
        self._alerts_polled_at = self._clock()
        try:
            notices = await self.poll_alerts()
        except PollError as exc:
            log.warning("alert_feed_failed", error=str(exc))
            return
        changed = self._store.merge_notices(notices)
        if changed:
            log.info("alert_feed_merged", alerts=len(notices), changed=changed)

    def _mark_health(self, ok: bool, exc: Exception | None = None) -> None:
        if self._stats is not None:
            self._stats.record_poll(ok)
        if ok:
            if not self._healthy:
                log.info("poll_source_recovered")
            self._healthy = True
            self.last_error = None
            return
        log.warning("poll_failed", error=str(exc), was_healthy=self._healthy)
        self._healthy = False
        self.last_error = exc

    def _check_live_path(self) -> None:
        if self._live_silent_check is None:
            return
        silent = self._live_silent_check()
        if silent and not self._live_silent:
            log.warning("live_path_silent")
        elif not silent and self._live_silent:
            log.info("live_path_resumed")
        self._live_silent = silent
