"""Engine configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: ACQ_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    env: str = "dev"  # "dev" or "prod"


@dataclass
class LiveConfig:
    url: str = ""  # empty: derived from poll.base_url + path
    path: str = "/ws"
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 15000
    max_attempts: int = 10
    open_timeout_seconds: float = 10.0
    silent_after_seconds: float = 30.0


@dataclass
class PollConfig:
    base_url: str = "http://localhost:5000"
    interval_seconds: float = 5.0
    timeout_seconds: float = 4.0
    latest_path: str = "/api/mqtt/sensor-data/latest"
    history_path: str = "/api/sensor-data/history"
    config_path: str = "/api/system-config"
    history_window: str = "6h"
    alerts_path: str = "/api/system-alerts"  # empty disables the alert feed
    alerts_interval_seconds: float = 30.0
    ack_path: str = "/api/alerts/acknowledge/{alert_id}"


@dataclass
class StoreConfig:
    freshness_window_seconds: float = 30.0
    max_alerts: int = 5
    max_notices: int = 5
    history_points: int = 49


@dataclass
class AlertsConfig:
    min_water_level: float = 12.0
    min_efficiency: float = 50.0
    max_current: float = 4.5
    max_vibration: float = 3.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    live: LiveConfig = field(default_factory=LiveConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def live_url(self) -> str:
        """Websocket URL: explicit ``live.url``, else the poll base with a ws scheme."""
        if self.live.url:
            return self.live.url
        base = self.poll.base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return base + self.live.path


_SECTIONS = ("server", "live", "poll", "store", "alerts", "logging")


def _coerce(current: object, raw: str) -> object:
    """Convert an env string to the type of the field's current value."""
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    for section_name in _SECTIONS:
        section = getattr(config, section_name)
        for f in fields(section):
            env_key = f"ACQ_{section_name}_{f.name}".upper()
            val = os.environ.get(env_key)
            if val is not None:
                setattr(section, f.name, _coerce(getattr(section, f.name), val))

    # Short aliases for the two settings changed most often.
    if "ACQ_LOG_LEVEL" in os.environ:
        config.logging.level = os.environ["ACQ_LOG_LEVEL"]
    if "ACQ_WS_URL" in os.environ:
        config.live.url = os.environ["ACQ_WS_URL"]


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path(os.environ.get("ACQ_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_name in _SECTIONS:
            section = getattr(config, section_name)
            for k, v in (raw.get(section_name) or {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
