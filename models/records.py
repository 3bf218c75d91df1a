"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class TelemetryMessage:
    """A raw message taken off the MQTT subscription."""

    topic: str
    payload: bytes
    received_at: float


@dataclass(slots=True)
class IntakeStats:
    """Running counters for the telemetry intake."""

    received: int = 0
    stored: int = 0
    rejected: int = 0
