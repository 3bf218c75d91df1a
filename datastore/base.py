"""Storage contract for readings and users."""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from typing import Optional

from app.schemas import SensorReading, SensorReadingCreate, User, UserCreate

DEFAULT_RECENT_LIMIT = 20

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def normalize_limit(value: object) -> int:
    """Coerce a requested limit to a positive int, falling back to 20.

    Strings are read up to their first non-digit, so ``"15abc"`` means 15.
    """

    if value is None or isinstance(value, bool):
        return DEFAULT_RECENT_LIMIT
    if isinstance(value, int):
        return value if value > 0 else DEFAULT_RECENT_LIMIT
    if isinstance(value, float):
        if not math.isfinite(value):
            return DEFAULT_RECENT_LIMIT
        parsed = int(value)
        return parsed if parsed > 0 else DEFAULT_RECENT_LIMIT
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match is None:
            return DEFAULT_RECENT_LIMIT
        parsed = int(match.group(1))
        return parsed if parsed > 0 else DEFAULT_RECENT_LIMIT
    return DEFAULT_RECENT_LIMIT


class ReadingStore(ABC):
    """Owns every reading and user record.

    Implementations raise ``StorageUnavailableError`` when the backing medium
    cannot be reached and never retry internally.
    """

    @abstractmethod
    async def create_user(self, candidate: UserCreate) -> User:
        ...

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    @abstractmethod
    async def create_sensor_reading(self, candidate: SensorReadingCreate) -> SensorReading:
        ...

    @abstractmethod
    async def get_recent_sensor_readings(self, limit: object = DEFAULT_RECENT_LIMIT) -> list[SensorReading]:
        ...

    @abstractmethod
    async def get_latest_sensor_reading(self) -> Optional[SensorReading]:
        ...
