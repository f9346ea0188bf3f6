#!/usr/bin/env python3
"""AcquaSync tank backend simulator.

Serves the live websocket and the poll endpoints the engine talks to, backed
by a simulated water tank and pump, so the engine can be exercised end to
end without hardware.

Usage:
    # Default tank on port 5000, one reading per second
    python -m tools.simulator.simulate

    # Drop the live connection every 30 frames to exercise reconnects
    python -m tools.simulator.simulate --drop-every 30

    # Start nearly empty with a worn pump (triggers alerts)
    python -m tools.simulator.simulate --level 8 --efficiency 45
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import time
from collections import deque
from dataclasses import dataclass, field

import uvicorn
from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse


@dataclass
class SimTank:
    device_id: str
    level: float = 65.0          # %
    temperature: float = 24.0    # °C
    pump_on: bool = False
    pump_auto_mode: bool = True
    efficiency: float = 85.0     # %
    consumption: float = 0.4     # % per tick drawn by the building
    inflow: float = 1.2          # % per tick while the pump runs
    history: deque = field(default_factory=lambda: deque(maxlen=720))
    alerts: list = field(default_factory=list)
    next_alert_id: int = 1


def step_tank(tank: SimTank) -> None:
    """Advance the tank by one tick."""
    if tank.pump_auto_mode:
        if tank.level < 20.0:
            tank.pump_on = True
        elif tank.level > 85.0:
            tank.pump_on = False

    delta = -tank.consumption * random.uniform(0.5, 1.5)
    if tank.pump_on:
        delta += tank.inflow * tank.efficiency / 100
    tank.level = max(0.0, min(100.0, tank.level + delta))
    tank.temperature += random.uniform(-0.05, 0.05)
    tank.efficiency = max(0.0, min(100.0, tank.efficiency + random.uniform(-0.2, 0.2)))


def make_reading(tank: SimTank, timestamp_ms: int) -> dict:
    """A sensorData payload for the current tank state."""
    running = tank.pump_on
    current = random.uniform(2.8, 3.6) * (100 / max(tank.efficiency, 1.0)) * 0.85 if running else 0.05
    return {
        "device": tank.device_id,
        "timestamp": timestamp_ms,
        "waterLevel": round(tank.level, 1),
        "temperature": round(tank.temperature, 1),
        "current": round(current, 2),
        "flowRate": round(random.uniform(11.0, 14.0) if running else 0.0, 1),
        "vibrationX": round(random.gauss(0.0, 0.4 if running else 0.02), 3),
        "vibrationY": round(random.gauss(0.0, 0.4 if running else 0.02), 3),
        "vibrationZ": round(random.gauss(1.0, 0.1), 3),
        "pump": running,
        "efficiency": round(tank.efficiency, 1),
    }


def raise_alerts(tank: SimTank, timestamp_ms: int) -> None:
    """Open a server alert when the tank runs low, unless one is still unacknowledged."""
    if tank.level >= 12.0:
        return
    if any(a["title"] == "Tank level critical" and not a["acknowledged"] for a in tank.alerts):
        return
    tank.alerts.append({
        "id": str(tank.next_alert_id),
        "type": "error",
        "title": "Tank level critical",
        "message": f"Water level at {tank.level:.1f}%",
        "timestamp": timestamp_ms,
        "acknowledged": False,
    })
    tank.next_alert_id += 1


def apply_command(tank: SimTank, action: str) -> bool:
    if action == "on":
        tank.pump_on, tank.pump_auto_mode = True, False
    elif action == "off":
        tank.pump_on, tank.pump_auto_mode = False, False
    elif action == "auto":
        tank.pump_auto_mode = True
    else:
        return False
    return True


def build_app(tank: SimTank, interval: float, drop_every: int, ping_every: int) -> FastAPI:
    app = FastAPI(title="AcquaSync tank simulator")

    @app.get("/api/mqtt/sensor-data/latest")
    async def latest() -> dict:
        if not tank.history:
            return make_reading(tank, int(time.time() * 1000))
        return tank.history[-1]

    @app.get("/api/system-config")
    async def system_config() -> dict:
        return {"pumpStatus": tank.pump_on, "pumpAutoMode": tank.pump_auto_mode}

    @app.get("/api/sensor-data/history")
    async def history(window: str = Query(default="6h")) -> list[dict]:
        return [{"timestamp": r["timestamp"], "level": r["waterLevel"]} for r in tank.history]

    @app.get("/api/system-alerts")
    async def system_alerts() -> list[dict]:
        return tank.alerts[-20:]

    @app.post("/api/alerts/acknowledge/{alert_id}")
    async def acknowledge(alert_id: str) -> JSONResponse:
        for alert in tank.alerts:
            if alert["id"] == alert_id:
                alert["acknowledged"] = True
                return JSONResponse(content={"acknowledged": True})
        return JSONResponse(status_code=404, content={"acknowledged": False})

    @app.websocket("/ws")
    async def live(ws: WebSocket) -> None:
        await ws.accept()
        print("client connected")

        async def receive() -> None:
            while True:
                frame = json.loads(await ws.receive_text())
                if frame.get("type") == "hello":
                    await ws.send_text(json.dumps({"type": "hello", "ts": int(time.time() * 1000)}))
                elif frame.get("type") == "controlPump" and apply_command(tank, frame.get("action", "")):
                    print(f"pump command: {frame['action']}")
                    await ws.send_text(json.dumps({"type": "pumpStatus", "data": {"pump": tank.pump_on}}))
                    await ws.send_text(json.dumps(
                        {"type": "systemConfig", "data": {"pumpAutoMode": tank.pump_auto_mode}},
                    ))

        receiver = asyncio.create_task(receive())
        sent = 0
        try:
            while True:
                await asyncio.sleep(interval)
                sent += 1
                if ping_every and sent % ping_every == 0:
                    await ws.send_text(json.dumps({"type": "ping"}))
                reading = tank.history[-1] if tank.history else make_reading(tank, int(time.time() * 1000))
                await ws.send_text(json.dumps({"type": "sensorData", "data": reading}))
                if tank.level < 12.0 and sent % 10 == 0:
                    await ws.send_text(json.dumps(
                        {"type": "systemAlert", "data": {"message": "Tank level critical", "level": "error"}},
                    ))
                if drop_every and sent % drop_every == 0:
                    print(f"dropping connection after {sent} frames")
                    await ws.close(code=1011)
                    break
        except WebSocketDisconnect:
            print("client disconnected")
        finally:
            receiver.cancel()

    return app


async def run_tank(tank: SimTank, interval: float) -> None:
    """Physics loop; independent of connected clients."""
    while True:
        step_tank(tank)
        now_ms = int(time.time() * 1000)
        tank.history.append(make_reading(tank, now_ms))
        raise_alerts(tank, now_ms)
        await asyncio.sleep(interval)


async def run_simulation(args: argparse.Namespace) -> None:
    tank = SimTank(
        device_id=args.device,
        level=args.level,
        efficiency=args.efficiency,
    )
    tank.history.append(make_reading(tank, int(time.time() * 1000)))

    print(f"Starting tank simulator: device {tank.device_id}")
    print(f"  Listening: http://{args.host}:{args.port} (live channel at /ws)")
    print(f"  Interval: {args.interval}s")
    print(f"  Drop live connection every: {args.drop_every or 'never'} frames")
    print()

    app = build_app(tank, args.interval, args.drop_every, args.ping_every)
    server = uvicorn.Server(uvicorn.Config(app, host=args.host, port=args.port, log_level="warning"))
    physics = asyncio.create_task(run_tank(tank, args.interval))
    try:
        await server.serve()
    finally:
        physics.cancel()


def main():
    parser = argparse.ArgumentParser(description="AcquaSync tank backend simulator")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=5000, help="Bind port")
    parser.add_argument("--device", default="tank-sim-01", help="Device identifier")
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between readings")
    parser.add_argument("--level", type=float, default=65.0, help="Initial water level (%%)")
    parser.add_argument("--efficiency", type=float, default=85.0, help="Initial pump efficiency (%%)")
    parser.add_argument("--drop-every", type=int, default=0,
                        help="Close the live connection after this many frames (0 = never)")
    parser.add_argument("--ping-every", type=int, default=5,
                        help="Send a keep-alive ping frame every N readings (0 = never)")

    args = parser.parse_args()
    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
