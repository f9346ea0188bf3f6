"""Error taxonomy for the telemetry engine.

None of these reach the presentation layer: each one is caught at the
component boundary that owns it and turned into observable state.
"""

from __future__ import annotations


class AcquaSyncError(Exception):
    """Base class for engine errors."""


class TransportError(AcquaSyncError):
    """The live connection failed to open or closed unexpectedly."""


class DecodeError(AcquaSyncError):
    """A frame or payload could not be decoded into a known message."""

    def __init__(self, reason: str, raw: object = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class PollError(AcquaSyncError):
    """A pull request failed, timed out, or returned an unusable body."""


class ExhaustedRetries(AcquaSyncError):
    """Reconnect attempts reached the configured maximum."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"gave up after {attempts} reconnect attempts")
        self.attempts = attempts
