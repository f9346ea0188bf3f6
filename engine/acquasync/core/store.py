"""The single authoritative current state.

Both the live path and the poll path write here. Acceptance of a sensor
reading depends only on its timestamp and on how long the held reading has
gone without replacement; the transport it came from is recorded for
diagnostics and never used to prefer one source over the other.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable, Iterable

import structlog

from acquasync.core.alerts import DEFAULT_THRESHOLDS, MAX_ALERTS, AlertThresholds, derive_alerts
from acquasync.core.models import (
    AlertRecord,
    HistoryPoint,
    Origin,
    SensorSnapshot,
    ServerNotice,
    SystemConfig,
    SystemConfigUpdate,
)

if TYPE_CHECKING:
    from acquasync.core.stats import EngineStats

log = structlog.get_logger()


@dataclass(frozen=True)
class StoreView:
    """What subscribers receive after every change."""
    snapshot: SensorSnapshot | None
    alerts: tuple[AlertRecord, ...]
    config: SystemConfig
    origin: Origin | None
    notices: tuple[ServerNotice, ...]


Subscriber = Callable[[StoreView], None]


class ReconciliationStore:
    """Holds the current snapshot, config, level history and server notices.

    A reading is accepted when its timestamp is strictly newer than the held
    one, or when the held one has not been replaced for longer than
    ``freshness_window_seconds`` (then any reading wins). Accepted readings
    replace the active alert set wholesale.

    All state changes and subscriber notifications happen under one
    re-entrant lock, so updates from different threads are serialized and
    subscribers may read back from the store while being notified.
    """

    def __init__(
        self,
        thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
        *,
        freshness_window_seconds: float = 30.0,
        max_alerts: int = MAX_ALERTS,
        max_notices: int = 5,
        history_points: int = 49,
        stats: EngineStats | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.RLock()
        self._thresholds = thresholds
        self._freshness_window = freshness_window_seconds
        self._max_alerts = max_alerts
        self._history_points = history_points
        self._stats = stats
        self._clock = clock

        self._snapshot: SensorSnapshot | None = None
        self._accepted_at: float = 0.0
        self._origin: Origin | None = None
        self._alerts: tuple[AlertRecord, ...] = ()
        self._config = SystemConfig()
        self._notices: deque[ServerNotice] = deque(maxlen=max_notices)
        self._history: list[HistoryPoint] = []
        self._server_hello_ms: int | None = None
        self._subscribers: list[Subscriber] = []

    # -- writes ------------------------------------------------------------

    def apply_sensor_update(self, snapshot: SensorSnapshot, origin: Origin) -> bool:
        """Accept or discard a reading. Returns True when it became current."""
        with self._lock:
            now = self._clock()
            current = self._snapshot
            if current is not None and snapshot.timestamp_ms <= current.timestamp_ms:
                age = now - self._accepted_at
                if age <= self._freshness_window:
                    log.debug("snapshot_rejected", origin=origin.value,
                              timestamp_ms=snapshot.timestamp_ms,
                              held_timestamp_ms=current.timestamp_ms)
                    if self._stats is not None:
                        self._stats.record_snapshot(False)
                    return False
                log.info("stale_snapshot_overridden", origin=origin.value,
                         held_age_seconds=round(age, 1),
                         timestamp_ms=snapshot.timestamp_ms)

            self._snapshot = snapshot
            self._accepted_at = now
            self._origin = origin
            self._alerts = tuple(derive_alerts(snapshot, self._thresholds, self._max_alerts))
            self._merge_history([HistoryPoint(snapshot.timestamp_ms, snapshot.water_level)])
            if self._stats is not None:
                self._stats.record_snapshot(True)
            self._publish()
            return True

    def apply_config_update(self, update: SystemConfigUpdate) -> SystemConfig:
        """Merge a partial config change. Arrival order decides; no timestamps."""
        with self._lock:
            changes = {}
            if update.pump_on is not None:
                changes["pump_on"] = update.pump_on
            if update.pump_auto_mode is not None:
                changes["pump_auto_mode"] = update.pump_auto_mode
            if changes:
                self._config = replace(self._config, **changes)
                self._publish()
            return replace(self._config)

    def apply_notice(self, notice: ServerNotice) -> None:
        with self._lock:
            if self._upsert_notice(notice):
                self._publish()

    def merge_notices(self, notices: Iterable[ServerNotice]) -> int:
        """Merge alert-feed entries by id, oldest first. Returns how many changed."""
        with self._lock:
            changed = sum(1 for notice in notices if self._upsert_notice(notice))
            if changed:
                self._publish()
            return changed

    def acknowledge_notice(self, alert_id: str) -> bool:
        """Mark a held notice acknowledged. False when no notice has that id."""
        with self._lock:
            for i, held in enumerate(self._notices):
                if held.alert_id == alert_id:
                    if not held.acknowledged:
                        self._notices[i] = replace(held, acknowledged=True)
                        self._publish()
                    return True
            return False


    def note_server_hello(self, ts_ms: int | None) -> None:
        with self._lock:
            self._server_hello_ms = ts_ms

    def seed_history(self, points: Iterable[HistoryPoint]) -> None:
        with self._lock:
            self._merge_history(points)

    # -- reads -------------------------------------------------------------

    def current_snapshot(self) -> SensorSnapshot | None:
        with self._lock:
            return self._snapshot

    def current_config(self) -> SystemConfig:
        with self._lock:
            return replace(self._config)

    def active_alerts(self) -> tuple[AlertRecord, ...]:
        with self._lock:
            return self._alerts

    def notices(self) -> tuple[ServerNotice, ...]:
        with self._lock:
            return tuple(self._notices)

    def history(self) -> list[HistoryPoint]:
        with self._lock:
            return list(self._history)

    @property
    def last_origin(self) -> Origin | None:
        with self._lock:
            return self._origin

    @property
    def server_hello_ms(self) -> int | None:
        with self._lock:
            return self._server_hello_ms

    def view(self) -> StoreView:
        with self._lock:
            return StoreView(
                snapshot=self._snapshot,
                alerts=self._alerts,
                config=replace(self._config),
                origin=self._origin,
                notices=tuple(self._notices),
            )

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        """Notify subscribers. Caller holds the lock."""
        view = self.view()
        for callback in list(self._subscribers):
            try:
                callback(view)
            except Exception:
                log.error("store_subscriber_failed", exc_info=True)

    def _upsert_notice(self, notice: ServerNotice) -> bool:
        """Replace the held notice with the same id, else push to the front. Caller holds the lock."""
        if notice.alert_id is not None:
            for i, held in enumerate(self._notices):
                if held.alert_id == notice.alert_id:
                    if held == notice:
                        return False
                    self._notices[i] = notice
                    return True
        self._notices.appendleft(notice)
        return True

    def _merge_history(self, points: Iterable[HistoryPoint]) -> None:
        """Merge points by timestamp and keep the newest ones. Caller holds the lock."""
        by_ts = {p.timestamp_ms: p for p in self._history}
        for p in points:
            by_ts[p.timestamp_ms] = p
        merged = sorted(by_ts.values(), key=lambda p: p.timestamp_ms)
        self._history = merged[-self._history_points:]
