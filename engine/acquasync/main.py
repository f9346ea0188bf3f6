"""AcquaSync — main entry point.

This is the only file that knows about concrete implementations.
It wires the websocket transport and the HTTP poll client into the engine
and exposes the engine's output surface over HTTP.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from acquasync.api.control import router as control_router
from acquasync.api.monitoring import router as monitoring_router
from acquasync.api.state import router as state_router
from acquasync.config import AppConfig, load_config
from acquasync.core.engine import TelemetryEngine
from acquasync.poll.http_client import HttpPollClient
from acquasync.transport.websocket import WebSocketTransport

log = structlog.get_logger()

# Module-level singletons (set during startup)
_engine: TelemetryEngine | None = None
_config: AppConfig | None = None


def get_engine() -> TelemetryEngine:
    assert _engine is not None, "Engine not initialized"
    return _engine


def get_config() -> AppConfig:
    assert _config is not None, "Engine not initialized"
    return _config


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Engine startup and shutdown."""
    global _engine, _config

    _config = load_config()
    _setup_logging(_config)

    log.info("engine_configured",
             env=_config.server.env,
             live_url=_config.live_url(),
             poll_base_url=_config.poll.base_url,
             poll_interval_seconds=_config.poll.interval_seconds)

    transport = WebSocketTransport(open_timeout=_config.live.open_timeout_seconds)
    poll_client = HttpPollClient(_config.poll.base_url, timeout_seconds=_config.poll.timeout_seconds)
    _engine = TelemetryEngine.from_config(_config, transport, poll_client)

    await _engine.start()

    yield

    # Shutdown
    await _engine.close()
    await poll_client.aclose()
    log.info("engine_shutdown")


app = FastAPI(
    title="AcquaSync",
    description="Water-tank telemetry synchronization engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(state_router)
app.include_router(control_router)
app.include_router(monitoring_router)
