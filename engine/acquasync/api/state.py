"""Read endpoints for the engine's output surface.

This is the thin FastAPI adapter over ``TelemetryEngine.status()`` and the
store; presentation polls these or subscribes in-process.
"""

from __future__ import annotations

from fastapi import APIRouter, Query

router = APIRouter(prefix="/api/v1")


@router.get("/state")
async def get_state() -> dict:
    """Current snapshot, alerts, config, connection and source health in one document."""
    from acquasync.main import get_engine

    return get_engine().status()


@router.get("/alerts")
async def get_alerts() -> dict:
    """Active derived alerts (priority order) and recent server notices (newest first)."""
    from acquasync.main import get_engine

    store = get_engine().store
    return {
        "alerts": [a.to_dict() for a in store.active_alerts()],
        "notices": [n.to_dict() for n in store.notices()],
    }


@router.get("/history")
async def get_history(
    limit: int = Query(default=49, ge=1, le=1000),
) -> dict:
    """Level history, oldest first, trimmed to the newest ``limit`` points."""
    from acquasync.main import get_engine

    points = get_engine().store.history()[-limit:]
    return {
        "points": [{"timestamp_ms": p.timestamp_ms, "level": p.level} for p in points],
        "total": len(points),
    }
