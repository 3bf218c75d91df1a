"""Read-only access to stored readings for pull-based consumers."""

from __future__ import annotations

from functools import lru_cache

from app.schemas import SensorReading
from datastore.base import ReadingStore, normalize_limit
from datastore.memory import build_default_store
from errors import ReadingNotFoundError


class ReadingService:

    def __init__(self, store: ReadingStore) -> None:
        self.store = store

    async def fetch_recent(self, limit: object = None) -> list[SensorReading]:
        """Newest-first readings; a missing or invalid limit means 20."""
        return await self.store.get_recent_sensor_readings(normalize_limit(limit))

    async def fetch_latest(self) -> SensorReading:
        reading = await self.store.get_latest_sensor_reading()
        if reading is None:
            raise ReadingNotFoundError("No readings available")
        return reading


@lru_cache
def build_default_reading_service() -> ReadingService:
    return ReadingService(store=build_default_store())
