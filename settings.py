from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from uuid import uuid4


_MQTT_ENABLED_ENV = "MQTT_ENABLED"
_MQTT_HOST_ENV = "MQTT_HOST"
_MQTT_PORT_ENV = "MQTT_PORT"
_MQTT_USERNAME_ENV = "MQTT_USERNAME"
_MQTT_PASSWORD_ENV = "MQTT_PASSWORD"
_MQTT_CLIENT_ID_ENV = "MQTT_CLIENT_ID"
_MQTT_TOPIC_ENV = "MQTT_TOPIC"
_MQTT_KEEPALIVE_ENV = "MQTT_KEEPALIVE"
_MQTT_RECONNECT_DELAY_ENV = "MQTT_RECONNECT_DELAY"
_STORE_URL_ENV = "READINGS_STORE_URL"
_STORE_REQUIRED_ENV = "READINGS_STORE_REQUIRED"
_RETENTION_COUNT_ENV = "READINGS_RETENTION_COUNT"
_RETENTION_SECONDS_ENV = "READINGS_RETENTION_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    mqtt_enabled: bool
    mqtt_host: str
    mqtt_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_client_id: str
    mqtt_topic: str
    mqtt_keepalive: int
    mqtt_reconnect_delay: int
    store_url: Optional[str]
    store_required: bool
    retention_count: Optional[int]
    retention_seconds: Optional[float]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_retention_count(default: Optional[int]) -> Optional[int]:
    value = os.getenv(_RETENTION_COUNT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    # zero or negative switches the count cap off
    return parsed if parsed > 0 else None


def _read_retention_seconds() -> Optional[float]:
    value = os.getenv(_RETENTION_SECONDS_ENV)
    if value is None:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        parsed = float(candidate)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        mqtt_enabled=_read_bool_env(_MQTT_ENABLED_ENV, True),
        mqtt_host=_read_str_env(_MQTT_HOST_ENV, "localhost"),
        mqtt_port=_read_positive_int(_MQTT_PORT_ENV, 1883),
        mqtt_username=_read_optional_env(_MQTT_USERNAME_ENV, None),
        mqtt_password=_read_optional_env(_MQTT_PASSWORD_ENV, None),
        mqtt_client_id=_read_str_env(
            _MQTT_CLIENT_ID_ENV, f"telemetry-relay-{uuid4().hex[:8]}"
        ),
        mqtt_topic=_read_str_env(_MQTT_TOPIC_ENV, "iot/telemetry"),
        mqtt_keepalive=_read_positive_int(_MQTT_KEEPALIVE_ENV, 60),
        mqtt_reconnect_delay=_read_positive_int(_MQTT_RECONNECT_DELAY_ENV, 5),
        store_url=_read_optional_env(_STORE_URL_ENV, None),
        store_required=_read_bool_env(_STORE_REQUIRED_ENV, False),
        retention_count=_read_retention_count(10000),
        retention_seconds=_read_retention_seconds(),
        log_level=_read_log_level("INFO"),
    )
