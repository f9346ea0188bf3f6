"""Health check and monitoring endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from acquasync.core.engine import PUMP_ACTIONS
from acquasync.core.models import ConnectionState

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health() -> dict:
    """Basic health check.

    ``status`` is "ok" when both the live and the poll path work,
    "degraded" when only one does, "unreachable" once the supervisor has
    given up and polling is failing too, and "down" otherwise.
    """
    from acquasync.main import get_engine

    engine = get_engine()
    live_ok = engine.supervisor.state is ConnectionState.CONNECTED and not engine.poller.live_silent
    poll_ok = engine.poller.source_healthy

    if live_ok and poll_ok:
        status = "ok"
    elif live_ok or poll_ok:
        status = "degraded"
    elif engine.supervisor.unreachable:
        status = "unreachable"
    else:
        status = "down"

    snapshot = engine.stats.snapshot()
    return {
        "status": status,
        "version": "0.1.0",
        "uptime_seconds": snapshot["uptime_seconds"],
        "live": engine.supervisor.state.value,
        "live_unreachable": engine.supervisor.unreachable,
        "source_healthy": poll_ok,
    }


@router.get("/stats")
async def stats() -> dict:
    """Detailed engine counters.

    - ``live``: frames, decode errors, pings, connects and reconnects
    - ``poll``: successful and failed poll cycles
    - ``store``: accepted and rejected snapshots
    """
    from acquasync.main import get_engine

    return get_engine().stats.snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Effective settings the presentation layer may want to show."""
    from acquasync.main import get_config

    config = get_config()
    return {
        "live_url": config.live_url(),
        "poll_interval_seconds": config.poll.interval_seconds,
        "alerts_interval_seconds": config.poll.alerts_interval_seconds,
        "freshness_window_seconds": config.store.freshness_window_seconds,
        "backoff": {
            "base_ms": config.live.backoff_base_ms,
            "cap_ms": config.live.backoff_cap_ms,
            "max_attempts": config.live.max_attempts,
        },
        "thresholds": {
            "min_water_level": config.alerts.min_water_level,
            "min_efficiency": config.alerts.min_efficiency,
            "max_current": config.alerts.max_current,
            "max_vibration": config.alerts.max_vibration,
        },
        "pump_actions": list(PUMP_ACTIONS),
    }
