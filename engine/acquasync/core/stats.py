"""Engine statistics and live-path liveness tracking.

In-memory counters shared by the router, supervisor and poller.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time


class EngineStats:
    """Thread-safe engine counters.

    The live path is considered silent when the supervisor reports
    CONNECTED but no frame (pings included) arrived within
    ``silent_after_seconds``.
    """

    def __init__(self, silent_after_seconds: float = 30.0, clock=time.monotonic) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._started_at = time.time()
        self._silent_after = silent_after_seconds

        # Live path
        self.frames_received: int = 0
        self.decode_errors: int = 0
        self.pings_received: int = 0
        self.connects: int = 0
        self.disconnects: int = 0
        self.reconnects_scheduled: int = 0
        self.commands_sent: int = 0
        self.commands_dropped: int = 0

        # Poll path
        self.polls_ok: int = 0
        self.polls_failed: int = 0

        # Store
        self.snapshots_accepted: int = 0
        self.snapshots_rejected: int = 0

        self._last_frame_at: float | None = None
        self._connected_at: float | None = None

    def record_frame(self) -> None:
        with self._lock:
            self.frames_received += 1
            self._last_frame_at = self._clock()

    def record_decode_error(self) -> None:
        with self._lock:
            self.decode_errors += 1

    def record_ping(self) -> None:
        with self._lock:
            self.pings_received += 1

    def record_connected(self) -> None:
        with self._lock:
            self.connects += 1
            self._connected_at = self._clock()

    def record_disconnected(self) -> None:
        with self._lock:
            self.disconnects += 1
            self._connected_at = None

    def record_reconnect_scheduled(self) -> None:
        with self._lock:
            self.reconnects_scheduled += 1

    def record_command(self, sent: bool) -> None:
        with self._lock:
            if sent:
                self.commands_sent += 1
            else:
                self.commands_dropped += 1

    def record_poll(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self.polls_ok += 1
            else:
                self.polls_failed += 1

    def record_snapshot(self, accepted: bool) -> None:
        with self._lock:
            if accepted:
                self.snapshots_accepted += 1
            else:
                self.snapshots_rejected += 1

    def live_silent(self) -> bool:
        """True when connected but nothing arrived for longer than the silence window."""
        now = self._clock()
        with self._lock:
            if self._connected_at is None:
                return False
            last = self._last_frame_at
            if last is None or last < self._connected_at:
                last = self._connected_at
            return now - last > self._silent_after

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now = self._clock()
        with self._lock:
            last_frame_age = None
            if self._last_frame_at is not None:
                last_frame_age = round(now - self._last_frame_at, 1)
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "live": {
                    "frames_received": self.frames_received,
                    "decode_errors": self.decode_errors,
                    "pings_received": self.pings_received,
                    "connects": self.connects,
                    "disconnects": self.disconnects,
                    "reconnects_scheduled": self.reconnects_scheduled,
                    "commands_sent": self.commands_sent,
                    "commands_dropped": self.commands_dropped,
                    "last_frame_age_seconds": last_frame_age,
                },
                "poll": {
                    "ok": self.polls_ok,
                    "failed": self.polls_failed,
                },
                "store": {
                    "snapshots_accepted": self.snapshots_accepted,
                    "snapshots_rejected": self.snapshots_rejected,
                },
            }
