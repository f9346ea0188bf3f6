"""Threshold alert rules applied to a sensor snapshot.

Pure functions only. The store calls ``derive_alerts`` on every accepted
snapshot and replaces its active set with the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from acquasync.core.models import AlertKind, AlertRecord, SensorSnapshot

# Upper bound on the active alert set.
MAX_ALERTS = 5


@dataclass(frozen=True)
class AlertThresholds:
    min_water_level: float = 12.0   # %
    min_efficiency: float = 50.0    # %
    max_current: float = 4.5        # A
    max_vibration: float = 3.0      # G


DEFAULT_THRESHOLDS = AlertThresholds()


@dataclass(frozen=True)
class _Rule:
    kind: AlertKind
    severity: str
    triggered: Callable[[SensorSnapshot, AlertThresholds], bool]
    message: Callable[[SensorSnapshot, AlertThresholds], str]


# Priority order. Readings the device did not report never trigger.
_RULES: tuple[_Rule, ...] = (
    _Rule(
        AlertKind.CRITICAL_LEVEL, "critical",
        lambda s, t: s.water_level < t.min_water_level,
        lambda s, t: f"Critical water level: {s.water_level:.1f}% (minimum {t.min_water_level:g}%)",
    ),
    _Rule(
        AlertKind.LOW_EFFICIENCY, "warning",
        lambda s, t: s.efficiency is not None and s.efficiency < t.min_efficiency,
        lambda s, t: f"Low pump efficiency: {s.efficiency:.1f}% (minimum {t.min_efficiency:g}%)",
    ),
    _Rule(
        AlertKind.HIGH_CURRENT, "warning",
        lambda s, t: s.current is not None and s.current > t.max_current,
        lambda s, t: f"High current draw: {s.current:.2f} A (maximum {t.max_current:g} A)",
    ),
    _Rule(
        AlertKind.HIGH_VIBRATION, "warning",
        lambda s, t: s.vibration is not None and s.vibration > t.max_vibration,
        lambda s, t: f"High vibration: {s.vibration:.3f} G (maximum {t.max_vibration:g} G)",
    ),
)


def derive_alerts(
    snapshot: SensorSnapshot,
    thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
    limit: int = MAX_ALERTS,
) -> list[AlertRecord]:
    """Evaluate every rule independently and return the triggered ones in priority order."""
    alerts = [
        AlertRecord(kind=rule.kind, severity=rule.severity, message=rule.message(snapshot, thresholds))
        for rule in _RULES
        if rule.triggered(snapshot, thresholds)
    ]
    return alerts[:limit]
