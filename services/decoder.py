"""Decoding of device telemetry payloads into reading candidates."""

from __future__ import annotations

import json
import math
from typing import Any, Mapping, Optional, Union

from app.schemas import SensorReadingCreate
from errors import DecodeError

PRIMARY_TEMPERATURE_KEY = "suhuDHT"
SECONDARY_TEMPERATURE_KEY = "suhuLM35"
LED_LEVEL_KEY = "LED"


def _parse_temperature(payload: Mapping[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"{key} must be a number or null, got {type(value).__name__}.")
    try:
        number = float(value)
    except OverflowError as exc:
        raise DecodeError(f"{key} is out of range.") from exc
    if not math.isfinite(number):
        raise DecodeError(f"{key} must be finite.")
    return number


def _parse_led_level(payload: Mapping[str, Any]) -> int:
    value = payload.get(LED_LEVEL_KEY)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"{LED_LEVEL_KEY} must be an integer, got {type(value).__name__}.")
    if isinstance(value, float):
        if not value.is_integer():
            raise DecodeError(f"{LED_LEVEL_KEY} must be an integer, got {value}.")
        value = int(value)
    if value < 0:
        raise DecodeError(f"{LED_LEVEL_KEY} must be non-negative, got {value}.")
    return value


def decode_payload(raw: Union[bytes, str]) -> SensorReadingCreate:
    """Parse a JSON telemetry message into a reading candidate.

    Every field is optional; an empty object yields a reading with null
    temperatures and LED level 0. Extra keys are ignored.
    """

    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        payload = json.loads(text)
    except (UnicodeDecodeError, ValueError, RecursionError) as exc:
        raise DecodeError(f"Payload is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise DecodeError(f"Payload must be a JSON object, got {type(payload).__name__}.")

    return SensorReadingCreate(
        dht_temperature=_parse_temperature(payload, PRIMARY_TEMPERATURE_KEY),
        lm35_temperature=_parse_temperature(payload, SECONDARY_TEMPERATURE_KEY),
        led_level=_parse_led_level(payload),
    )
