"""Pump control, manual reconnect and alert acknowledgement endpoints."""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from acquasync.core.engine import PUMP_ACTIONS
from acquasync.core.errors import PollError

router = APIRouter(prefix="/api/v1")


@router.post("/pump")
async def control_pump(request: Request) -> JSONResponse:
    """Send a pump command over the live channel.

    Body: {"action": "on" | "off" | "auto"}

    202 means the frame was written, not that the pump obeyed; the result
    shows up in the next state update. 409 means the live channel is down.
    """
    from acquasync.main import get_engine

    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(status_code=400, content={"sent": False, "error": "invalid JSON"})

    action = body.get("action") if isinstance(body, dict) else None
    if action not in PUMP_ACTIONS:
        return JSONResponse(
            status_code=422,
            content={"sent": False, "error": f"action must be one of {list(PUMP_ACTIONS)}"},
        )

    engine = get_engine()
    sent = await engine.send_command(action)
    if not sent:
        return JSONResponse(
            status_code=409,
            content={"sent": False, "error": "live channel not connected",
                     "connection": engine.supervisor.state.value},
        )
    return JSONResponse(status_code=202, content={"sent": True, "action": action})


@router.post("/reconnect")
async def reconnect() -> JSONResponse:
    """Manual retry after the supervisor gave up (or any time)."""
    from acquasync.main import get_engine

    engine = get_engine()
    await engine.reconnect()
    return JSONResponse(content={
        "state": engine.supervisor.state.value,
        "unreachable": engine.supervisor.unreachable,
    })


@router.post("/alerts/{alert_id}/ack")
async def acknowledge_alert(alert_id: str) -> JSONResponse:
    """Acknowledge a server alert upstream.

    ``held`` tells whether the engine had that alert in its notice log. 502
    means the backend did not accept the acknowledgement.
    """
    from acquasync.main import get_engine

    try:
        held = await get_engine().acknowledge_alert(alert_id)
    except PollError as exc:
        return JSONResponse(
            status_code=502,
            content={"acknowledged": False, "id": alert_id, "error": str(exc)},
        )
    return JSONResponse(content={"acknowledged": True, "id": alert_id, "held": held})
