"""AcquaSync core data models.

These are plain dataclasses with no framework dependencies.
Wire payloads (JSON frames, poll responses) are converted to these at the
boundary by ``acquasync.core.decoder``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class Origin(str, Enum):
    """Which transport produced a reading. Diagnostics only."""
    PUSH = "push"
    POLL = "poll"


class MessageKind(str, Enum):
    SENSOR_DATA = "sensorData"
    PUMP_STATUS = "pumpStatus"
    SYSTEM_ALERT = "systemAlert"
    SYSTEM_CONFIG = "systemConfig"
    PING = "ping"
    HELLO = "hello"


class AlertKind(str, Enum):
    CRITICAL_LEVEL = "critical_level"
    LOW_EFFICIENCY = "low_efficiency"
    HIGH_CURRENT = "high_current"
    HIGH_VIBRATION = "high_vibration"


def vibration_magnitude(x: float | None, y: float | None, z: float | None) -> float:
    """Euclidean norm of the three vibration axes, in G.

    Missing axes count as zero. This is a best-effort approximation of the
    overall vibration level, not a calibrated RMS measurement.
    """
    return math.hypot(x or 0.0, y or 0.0, z or 0.0)


@dataclass(frozen=True)
class SensorSnapshot:
    timestamp_ms: int
    water_level: float
    temperature: float | None = None
    current: float | None = None
    flow_rate: float | None = None
    vibration: float | None = None
    pump_running: bool | None = None
    efficiency: float | None = None
    device_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "timestamp_ms": self.timestamp_ms,
            "water_level": self.water_level,
            "temperature": self.temperature,
            "current": self.current,
            "flow_rate": self.flow_rate,
            "vibration": self.vibration,
            "pump_running": self.pump_running,
            "efficiency": self.efficiency,
        }


@dataclass
class SystemConfig:
    """Pump configuration. Last write wins; there is no timestamp."""
    pump_on: bool = False
    pump_auto_mode: bool = True

    def to_dict(self) -> dict:
        return {"pump_on": self.pump_on, "pump_auto_mode": self.pump_auto_mode}


@dataclass(frozen=True)
class SystemConfigUpdate:
    """Partial config change. ``None`` fields leave the current value alone."""
    pump_on: bool | None = None
    pump_auto_mode: bool | None = None

    @property
    def is_empty(self) -> bool:
        return self.pump_on is None and self.pump_auto_mode is None


@dataclass(frozen=True)
class AlertRecord:
    kind: AlertKind
    severity: str  # "critical" or "warning"
    message: str

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "severity": self.severity, "message": self.message}


@dataclass(frozen=True)
class ServerNotice:
    """An alert raised by the backend.

    Arrives pushed as a ``systemAlert`` frame or pulled from the alert feed.
    Feed entries carry an ``alert_id``, which is also what acknowledgement
    refers to.
    """
    message: str
    received_ms: int
    level: str | None = None
    alert_id: str | None = None
    title: str | None = None
    acknowledged: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.alert_id,
            "title": self.title,
            "message": self.message,
            "level": self.level,
            "received_ms": self.received_ms,
            "acknowledged": self.acknowledged,
        }


@dataclass(frozen=True)
class HistoryPoint:
    timestamp_ms: int
    level: float


@dataclass(frozen=True)
class Hello:
    ts_ms: int | None = None


@dataclass(frozen=True)
class DecodedMessage:
    kind: MessageKind
    payload: SensorSnapshot | SystemConfigUpdate | ServerNotice | Hello | None = None


@dataclass
class ReconnectState:
    """Attempt counter and capped exponential backoff for the live connection."""
    base_ms: int = 1000
    cap_ms: int = 15000
    max_attempts: int = 10
    attempt: int = 0
    delays_ms: list[int] = field(default_factory=list)

    def next_delay_ms(self) -> int:
        return min(self.cap_ms, self.base_ms * 2 ** self.attempt)

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def advance(self) -> int:
        """Consume one attempt and return the delay before it."""
        delay = self.next_delay_ms()
        self.attempt += 1
        self.delays_ms.append(delay)
        return delay

    def reset(self) -> None:
        self.attempt = 0
        self.delays_ms.clear()
