"""
Error types raised by the telemetry storage layer.
"""


class TelemetryError(Exception):
    """Base class for telemetry storage errors."""


class PersistenceError(TelemetryError):
    """Raised when an event or partition cannot be written.

    Writes are never retried internally; the caller owns retry policy.
    """


class MalformedRecord(TelemetryError, ValueError):
    """Raised when a stored record cannot be turned into an event."""
