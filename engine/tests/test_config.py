"""Tests for configuration loading."""

from __future__ import annotations

from acquasync.config import AppConfig, load_config


def test_defaults(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config.live.backoff_base_ms == 1000
    assert config.live.backoff_cap_ms == 15000
    assert config.live.max_attempts == 10
    assert config.poll.timeout_seconds == 4.0
    assert config.poll.alerts_interval_seconds == 30.0
    assert config.poll.alerts_path == "/api/system-alerts"
    assert config.store.freshness_window_seconds == 30.0
    assert config.store.history_points == 49
    assert config.live_url() == "ws://localhost:5000/ws"


def test_yaml_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "poll:\n"
        "  base_url: https://tanks.example.org\n"
        "  interval_seconds: 2.5\n"
        "alerts:\n"
        "  min_water_level: 20\n"
        "unknown_section:\n"
        "  anything: 1\n"
    )
    config = load_config(path)

    assert config.poll.interval_seconds == 2.5
    assert config.alerts.min_water_level == 20
    assert config.live_url() == "wss://tanks.example.org/ws"


def test_env_overrides_win(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("live:\n  max_attempts: 3\n")
    monkeypatch.setenv("ACQ_LIVE_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("ACQ_STORE_FRESHNESS_WINDOW_SECONDS", "12.5")
    monkeypatch.setenv("ACQ_LOG_LEVEL", "debug")

    config = load_config(path)

    assert config.live.max_attempts == 7
    assert config.store.freshness_window_seconds == 12.5
    assert config.logging.level == "debug"


def test_explicit_live_url(monkeypatch, tmp_path):
    monkeypatch.setenv("ACQ_WS_URL", "ws://10.0.0.5:8765/telemetry")
    config = load_config(tmp_path / "missing.yaml")
    assert config.live_url() == "ws://10.0.0.5:8765/telemetry"


def test_live_url_respects_path():
    config = AppConfig()
    config.poll.base_url = "http://tank.local:5000/"
    config.live.path = "/stream"
    assert config.live_url() == "ws://tank.local:5000/stream"
