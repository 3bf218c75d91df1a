"""Error kinds shared by the intake, storage and query layers."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for service errors."""


class DecodeError(RelayError, ValueError):
    """Inbound telemetry payload is malformed or carries wrongly typed fields."""


class StorageUnavailableError(RelayError):
    """The reading store could not reach its backing medium."""


class UpstreamConnectionError(RelayError):
    """The MQTT broker is unreachable or rejected the connection."""


class DuplicateKeyError(RelayError):
    """A uniqueness constraint was violated on creation."""


class ConfigurationError(RelayError):
    """Startup configuration is missing or invalid."""


class ReadingNotFoundError(RelayError, KeyError):
    """No reading matches the query."""
