"""Frame decoding and routing.

Every inbound frame is a JSON object with a ``type`` discriminant and a
kind-dependent ``data`` payload. ``decode`` turns it into a typed
``DecodedMessage`` or raises ``DecodeError``; ``MessageRouter`` is the only
caller on the live path and never lets a bad frame escape.

The payload parsers are shared with the poll path so a reading validates the
same way whichever transport delivered it.
"""

from __future__ import annotations

import json
import math
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

import structlog

from acquasync.core.errors import DecodeError
from acquasync.core.models import (
    DecodedMessage,
    Hello,
    HistoryPoint,
    MessageKind,
    SensorSnapshot,
    ServerNotice,
    SystemConfigUpdate,
    vibration_magnitude,
)

if TYPE_CHECKING:
    from acquasync.core.stats import EngineStats

log = structlog.get_logger()

MessageHandler = Callable[[DecodedMessage], None]


def _first(data: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _number(data: dict, *keys: str, required: bool = False) -> float | None:
    value = _first(data, keys)
    if value is None:
        if required:
            raise DecodeError(f"missing numeric field {keys[0]!r}", data)
        return None
    # bool is an int subclass; a flag in a numeric slot is malformed
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"field {keys[0]!r} is not a number: {value!r}", data)
    try:
        number = float(value)
    except OverflowError as exc:
        raise DecodeError(f"field {keys[0]!r} is out of range: {value!r}", data) from exc
    if not math.isfinite(number):
        raise DecodeError(f"field {keys[0]!r} is not finite: {value!r}", data)
    return number


def _flag(data: dict, *keys: str) -> bool | None:
    value = _first(data, keys)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise DecodeError(f"field {keys[0]!r} is not a boolean: {value!r}", data)
    return value


def _epoch_ms(number: float, raw: Any) -> int:
    # json accepts 1e400, Infinity and NaN; none of them is a point in time
    if not math.isfinite(number):
        raise DecodeError(f"timestamp is not finite: {raw!r}", raw)
    return int(number)


def parse_timestamp(value: Any) -> int:
    """Epoch milliseconds from a number or an ISO-8601 string (naive = UTC)."""
    if isinstance(value, bool):
        raise DecodeError(f"invalid timestamp: {value!r}", value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return _epoch_ms(value, value)
    if not isinstance(value, str):
        raise DecodeError(f"invalid timestamp: {value!r}", value)

    text = value.strip()
    try:
        number = float(text)
    except ValueError:
        pass
    else:
        return _epoch_ms(number, value)

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    except (ValueError, OverflowError) as exc:
        raise DecodeError(f"invalid timestamp: {value!r}", value) from exc


def _require_object(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise DecodeError(f"{what} must be an object, got {type(data).__name__}", data)
    return data


def parse_sensor_payload(data: Any) -> SensorSnapshot:
    """Build a SensorSnapshot from a ``sensorData`` payload or a latest-reading response."""
    data = _require_object(data, "sensor payload")

    raw_ts = _first(data, ("timestamp", "ts"))
    if raw_ts is None:
        raise DecodeError("sensor payload has no timestamp", data)

    # Magnitude, or per-axis as vibrationX/Y/Z or a nested {"x", "y", "z"}.
    nested = data.get("vibration")
    if isinstance(nested, dict):
        vibration = vibration_magnitude(_number(nested, "x"), _number(nested, "y"), _number(nested, "z"))
    else:
        vibration = _number(data, "vibration")
        if vibration is None:
            x = _number(data, "vibrationX")
            y = _number(data, "vibrationY")
            z = _number(data, "vibrationZ")
            if x is not None or y is not None or z is not None:
                vibration = vibration_magnitude(x, y, z)

    device = _first(data, ("device", "deviceId"))
    if device is not None and not isinstance(device, str):
        raise DecodeError(f"device id is not a string: {device!r}", data)

    return SensorSnapshot(
        timestamp_ms=parse_timestamp(raw_ts),
        water_level=_number(data, "waterLevel", "level", required=True),
        temperature=_number(data, "temperature"),
        current=_number(data, "current"),
        flow_rate=_number(data, "flowRate"),
        vibration=vibration,
        pump_running=_flag(data, "pump", "pumpStatus"),
        efficiency=_number(data, "efficiency"),
        device_id=device,
    )


def parse_config_payload(data: Any) -> SystemConfigUpdate:
    """Build a partial config update from ``pumpStatus``/``systemConfig`` payloads.

    Both wire spellings of the pump flag (``pump`` and ``pumpStatus``) map to
    ``pump_on``.
    """
    data = _require_object(data, "config payload")
    update = SystemConfigUpdate(
        pump_on=_flag(data, "pumpStatus", "pump"),
        pump_auto_mode=_flag(data, "pumpAutoMode"),
    )
    if update.is_empty:
        raise DecodeError("config payload carries no known fields", data)
    return update


def parse_notice(data: Any, now_ms: int) -> ServerNotice:
    """Build a ServerNotice from a ``systemAlert`` payload or one alert-feed entry.

    ``message`` falls back to ``title``. A ``timestamp`` in the payload wins
    over ``now_ms``. Numeric ids are kept as strings.
    """
    data = _require_object(data, "alert payload")
    title = data.get("title")
    title = title if isinstance(title, str) and title else None
    message = data.get("message")
    if not isinstance(message, str) or not message:
        message = title
    if message is None:
        raise DecodeError("alert payload has no message", data)

    alert_id = data.get("id")
    if alert_id is not None and (isinstance(alert_id, bool) or not isinstance(alert_id, (str, int))):
        raise DecodeError(f"alert id is not a string: {alert_id!r}", data)

    raw_ts = _first(data, ("timestamp", "ts"))
    level = _first(data, ("level", "type", "severity"))
    return ServerNotice(
        message=message,
        received_ms=parse_timestamp(raw_ts) if raw_ts is not None else now_ms,
        level=level if isinstance(level, str) else None,
        alert_id=str(alert_id) if alert_id is not None else None,
        title=title,
        acknowledged=_flag(data, "acknowledged") or False,
    )


def parse_alert_feed(body: Any, now_ms: int) -> list[ServerNotice]:
    """Server alerts from the alert feed, oldest first.

    Accepts a bare list or an object wrapping it under ``alerts`` or ``data``.
    Entries without an id cannot be merged or acknowledged and are rejected.
    """
    if isinstance(body, dict):
        body = _first(body, ("alerts", "data"))
    if not isinstance(body, list):
        raise DecodeError("alert feed is not a list", body)

    notices = []
    for item in body:
        notice = parse_notice(item, now_ms)
        if notice.alert_id is None:
            raise DecodeError("alert feed entry has no id", item)
        notices.append(notice)
    notices.sort(key=lambda n: n.received_ms)
    return notices



def parse_history_payload(body: Any) -> list[HistoryPoint]:
    """Ordered level history from a history response.

    Accepts a bare list or an object wrapping it under ``points`` or ``data``.
    """
    if isinstance(body, dict):
        body = _first(body, ("points", "data"))
    if not isinstance(body, list):
        raise DecodeError("history response is not a list", body)

    points = []
    for item in body:
        item = _require_object(item, "history point")
        raw_ts = _first(item, ("timestamp", "ts", "time"))
        if raw_ts is None:
            raise DecodeError("history point has no timestamp", item)
        points.append(HistoryPoint(
            timestamp_ms=parse_timestamp(raw_ts),
            level=_number(item, "level", "waterLevel", required=True),
        ))
    points.sort(key=lambda p: p.timestamp_ms)
    return points


def decode(raw: str | bytes, now_ms: int | None = None) -> DecodedMessage:
    """Decode one live frame. Raises DecodeError for anything unusable."""
    try:
        frame = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DecodeError("frame is not valid JSON", raw) from exc
    frame = _require_object(frame, "frame")

    kind_name = frame.get("type")
    if not isinstance(kind_name, str):
        raise DecodeError("frame has no type", frame)
    try:
        kind = MessageKind(kind_name)
    except ValueError as exc:
        raise DecodeError(f"unknown frame type {kind_name!r}", frame) from exc

    data = frame.get("data")

    if kind is MessageKind.PING:
        return DecodedMessage(kind)
    if kind is MessageKind.HELLO:
        ts = frame.get("ts")
        return DecodedMessage(kind, Hello(ts_ms=parse_timestamp(ts) if ts is not None else None))
    if kind is MessageKind.SENSOR_DATA:
        return DecodedMessage(kind, parse_sensor_payload(data))
    if kind is MessageKind.PUMP_STATUS:
        update = parse_config_payload(data)
        if update.pump_on is None:
            raise DecodeError("pumpStatus payload has no pump flag", data)
        return DecodedMessage(kind, update)
    if kind is MessageKind.SYSTEM_CONFIG:
        return DecodedMessage(kind, parse_config_payload(data))
    # SYSTEM_ALERT
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return DecodedMessage(kind, parse_notice(data, now_ms))


class MessageRouter:
    """Decodes raw frames and hands them to the current handler.

    There is one handler slot: ``on_message`` replaces whatever was
    registered before. Only the most recently registered handler receives
    messages. Consumers that need fan-out subscribe to the store instead.
    """

    def __init__(self, stats: EngineStats | None = None) -> None:
        self._stats = stats
        self._handler: MessageHandler | None = None

    def on_message(self, handler: MessageHandler | None) -> None:
        self._handler = handler

    def route(self, raw: str | bytes) -> DecodedMessage | None:
        """Decode and dispatch one frame. Returns the message, or None if dropped."""
        if self._stats is not None:
            self._stats.record_frame()
        try:
            message = decode(raw)
        except DecodeError as exc:
            log.warning("frame_dropped", reason=exc.reason, frame=str(raw)[:200])
            if self._stats is not None:
                self._stats.record_decode_error()
            return None

        if message.kind is MessageKind.PING:
            if self._stats is not None:
                self._stats.record_ping()
            return None

        if self._handler is None:
            log.debug("frame_unhandled", kind=message.kind.value)
            return None
        self._handler(message)
        return message
