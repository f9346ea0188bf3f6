"""Tests for the reconciliation store."""

from __future__ import annotations

import threading

from acquasync.core.models import (
    AlertKind,
    HistoryPoint,
    Origin,
    SensorSnapshot,
    ServerNotice,
    SystemConfigUpdate,
)
from acquasync.core.stats import EngineStats
from acquasync.core.store import ReconciliationStore
from fakes import FakeClock

T0 = 1_700_000_000_000


def reading(ts_offset_ms: int = 0, level: float = 60.0, **fields) -> SensorSnapshot:
    return SensorSnapshot(timestamp_ms=T0 + ts_offset_ms, water_level=level, **fields)


def make_store(**kwargs) -> tuple[ReconciliationStore, FakeClock]:
    clock = FakeClock()
    return ReconciliationStore(clock=clock, **kwargs), clock


def test_first_reading_is_accepted():
    store, _ = make_store()
    assert store.current_snapshot() is None

    assert store.apply_sensor_update(reading(), Origin.PUSH) is True
    assert store.current_snapshot() == reading()
    assert store.last_origin is Origin.PUSH


def test_newer_reading_wins_from_either_source():
    store, _ = make_store()
    store.apply_sensor_update(reading(0), Origin.PUSH)

    assert store.apply_sensor_update(reading(1000, level=61.0), Origin.POLL) is True
    assert store.current_snapshot().water_level == 61.0
    assert store.last_origin is Origin.POLL


def test_older_or_equal_reading_rejected_inside_window():
    stats = EngineStats()
    store, clock = make_store(stats=stats)
    store.apply_sensor_update(reading(5000, level=70.0), Origin.POLL)
    clock.advance(10)

    assert store.apply_sensor_update(reading(1000, level=10.0), Origin.PUSH) is False
    assert store.apply_sensor_update(reading(5000, level=10.0), Origin.PUSH) is False
    assert store.current_snapshot().water_level == 70.0
    assert store.active_alerts() == ()
    assert stats.snapshots_rejected == 2
    assert stats.snapshots_accepted == 1


def test_stale_held_reading_is_overridden():
    store, clock = make_store(freshness_window_seconds=30.0)
    store.apply_sensor_update(reading(5000), Origin.PUSH)
    clock.advance(30.5)

    # older timestamp, but the held one has gone unreplaced too long
    assert store.apply_sensor_update(reading(1000, level=42.0), Origin.POLL) is True
    assert store.current_snapshot().water_level == 42.0


def test_window_measured_from_last_acceptance():
    store, clock = make_store(freshness_window_seconds=30.0)
    store.apply_sensor_update(reading(0), Origin.PUSH)
    clock.advance(20)
    store.apply_sensor_update(reading(1000), Origin.PUSH)
    clock.advance(20)

    assert store.apply_sensor_update(reading(500), Origin.POLL) is False


def test_alerts_replaced_wholesale():
    store, _ = make_store()
    store.apply_sensor_update(reading(0, level=10.0, efficiency=45.0), Origin.PUSH)
    assert [a.kind for a in store.active_alerts()] == [AlertKind.CRITICAL_LEVEL, AlertKind.LOW_EFFICIENCY]

    store.apply_sensor_update(reading(1000, level=65.0, efficiency=85.0), Origin.PUSH)
    assert store.active_alerts() == ()


def test_subscribers_notified_on_accept_only():
    store, _ = make_store()
    views = []
    unsubscribe = store.subscribe(views.append)

    store.apply_sensor_update(reading(1000), Origin.PUSH)
    store.apply_sensor_update(reading(0), Origin.POLL)
    assert len(views) == 1
    assert views[0].snapshot == reading(1000)
    assert views[0].origin is Origin.PUSH

    unsubscribe()
    store.apply_sensor_update(reading(2000), Origin.PUSH)
    assert len(views) == 1


def test_failing_subscriber_does_not_block_others():
    store, _ = make_store()
    seen = []

    def explode(view):
        raise RuntimeError("boom")

    store.subscribe(explode)
    store.subscribe(seen.append)

    assert store.apply_sensor_update(reading(), Origin.PUSH) is True
    assert len(seen) == 1


def test_subscriber_can_read_back_during_notification():
    store, _ = make_store()
    read_back = []
    store.subscribe(lambda view: read_back.append(store.current_snapshot()))

    store.apply_sensor_update(reading(), Origin.PUSH)
    assert read_back == [reading()]


def test_config_merge_and_copy():
    store, _ = make_store()
    views = []
    store.subscribe(views.append)

    config = store.apply_config_update(SystemConfigUpdate(pump_on=True))
    assert config.pump_on is True
    assert config.pump_auto_mode is True

    store.apply_config_update(SystemConfigUpdate(pump_auto_mode=False))
    assert store.current_config().to_dict() == {"pump_on": True, "pump_auto_mode": False}

    # callers get copies
    config.pump_on = False
    assert store.current_config().pump_on is True
    assert len(views) == 2

    store.apply_config_update(SystemConfigUpdate())
    assert len(views) == 2


def test_notices_bounded_newest_first():
    store, _ = make_store(max_notices=5)
    for i in range(7):
        store.apply_notice(ServerNotice(message=f"notice {i}", received_ms=i))

    assert [n.message for n in store.notices()] == [f"notice {i}" for i in (6, 5, 4, 3, 2)]


def test_history_merged_deduplicated_and_bounded():
    store, _ = make_store(history_points=3)
    store.seed_history([HistoryPoint(T0 - 2000, 50.0), HistoryPoint(T0 - 1000, 51.0)])
    store.seed_history([HistoryPoint(T0 - 1000, 52.0)])
    assert [(p.timestamp_ms, p.level) for p in store.history()] == [(T0 - 2000, 50.0), (T0 - 1000, 52.0)]

    store.apply_sensor_update(reading(0, level=53.0), Origin.PUSH)
    store.apply_sensor_update(reading(1000, level=54.0), Origin.PUSH)

    assert [p.level for p in store.history()] == [52.0, 53.0, 54.0]


def test_server_hello_recorded():
    store, _ = make_store()
    store.note_server_hello(T0)
    assert store.server_hello_ms == T0


def test_concurrent_updates_end_at_newest():
    store = ReconciliationStore()
    accepted = []
    store.subscribe(lambda view: accepted.append(view.snapshot.timestamp_ms))

    def writer(offset: int, origin: Origin) -> None:
        for i in range(offset, 400, 2):
            store.apply_sensor_update(reading(i), origin)

    threads = [
        threading.Thread(target=writer, args=(0, Origin.PUSH)),
        threading.Thread(target=writer, args=(1, Origin.POLL)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.current_snapshot().timestamp_ms == T0 + 399
    # every accepted reading was strictly newer than the one before it
    assert accepted == sorted(set(accepted))


def test_feed_notices_merged_by_id():
    store, _ = make_store(max_notices=5)
    views = []
    store.subscribe(views.append)
    store.apply_notice(ServerNotice(message="pushed", received_ms=1))

    feed = [
        ServerNotice(message="low efficiency", received_ms=2, alert_id="a1"),
        ServerNotice(message="tank critical", received_ms=3, alert_id="a2"),
    ]
    assert store.merge_notices(feed) == 2
    assert [n.message for n in store.notices()] == ["tank critical", "low efficiency", "pushed"]
    assert len(views) == 2

    # same feed again: nothing changes, nobody is notified
    assert store.merge_notices(feed) == 0
    assert len(views) == 2

    updated = ServerNotice(message="low efficiency", received_ms=2, alert_id="a1", acknowledged=True)
    assert store.merge_notices([updated]) == 1
    assert [n.alert_id for n in store.notices()] == ["a2", "a1", None]
    assert store.notices()[1].acknowledged is True


def test_acknowledge_notice():
    store, _ = make_store()
    store.merge_notices([ServerNotice(message="tank critical", received_ms=1, alert_id="a2")])
    views = []
    store.subscribe(views.append)

    assert store.acknowledge_notice("a2") is True
    assert store.notices()[0].acknowledged is True
    assert len(views) == 1

    # already acknowledged
    assert store.acknowledge_notice("a2") is True
    assert len(views) == 1
    assert store.acknowledge_notice("unknown") is False
