"""Shared test fixtures."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

import acquasync.main as main_module
from acquasync.config import AppConfig
from acquasync.core.engine import TelemetryEngine
from fakes import HISTORY, LATEST, SYSTEM_CONFIG, FakePollClient, FakeSleep, FakeTransport


@pytest.fixture
def config() -> AppConfig:
    config = AppConfig()
    config.poll.base_url = "http://tank.test"
    config.logging.level = "warning"
    return config


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def poll_client() -> FakePollClient:
    return FakePollClient({
        LATEST: {"timestamp": 1_700_000_000_000, "waterLevel": 60.0, "efficiency": 90.0, "current": 1.2},
        HISTORY: [{"timestamp": 1_699_999_990_000, "level": 59.5}],
        SYSTEM_CONFIG: {"pumpStatus": False, "pumpAutoMode": True},
    })


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep(block=True)


@pytest.fixture
def engine(config, transport, poll_client, sleep) -> TelemetryEngine:
    return TelemetryEngine.from_config(config, transport, poll_client, sleep=sleep)


@pytest.fixture(autouse=True)
def _init_engine(config, engine):
    """Initialize the HTTP surface singletons for every test. The engine is not started."""
    main_module._config = config
    main_module._engine = engine

    yield

    # Cleanup
    main_module._config = None
    main_module._engine = None


@pytest.fixture
async def client():
    from acquasync.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
