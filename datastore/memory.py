from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

from pydantic import ValidationError

from app.schemas import SensorReading, SensorReadingCreate, User, UserCreate
from datastore.base import DEFAULT_RECENT_LIMIT, ReadingStore, normalize_limit
from errors import ConfigurationError, DuplicateKeyError, StorageUnavailableError
from settings import get_settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ordering_key(reading: SensorReading) -> tuple[datetime, int]:
    return reading.timestamp, reading.id


class MemoryReadingStore(ReadingStore):
    """Dict-backed store with optional JSON snapshot persistence and retention."""

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        max_readings: Optional[int] = None,
        max_age: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.persistence_path = persistence_path
        self.max_readings = max_readings
        self.max_age = max_age
        self._clock = clock or _utcnow
        self._users: Dict[int, User] = {}
        self._readings: Dict[int, SensorReading] = {}
        self._next_user_id = 1
        self._next_reading_id = 1
        self._write_lock = asyncio.Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    async def create_user(self, candidate: UserCreate) -> User:
        if await self.get_user_by_username(candidate.username) is not None:
            raise DuplicateKeyError(f"Username {candidate.username!r} already exists.")
        user = User(id=self._next_user_id, username=candidate.username, password=candidate.password)
        self._next_user_id += 1
        self._users[user.id] = user
        try:
            await self._persist()
        except StorageUnavailableError:
            del self._users[user.id]
            if self._next_user_id == user.id + 1:
                self._next_user_id = user.id
            raise
        return user.model_copy(deep=True)

    async def get_user(self, user_id: int) -> Optional[User]:
        user = self._users.get(user_id)
        if user is None:
            return None
        return user.model_copy(deep=True)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self._users.values():
            if user.username == username:
                return user.model_copy(deep=True)
        return None

    async def create_sensor_reading(self, candidate: SensorReadingCreate) -> SensorReading:
        now = self._clock()
        reading = SensorReading(
            id=self._next_reading_id,
            dht_temperature=candidate.dht_temperature,
            lm35_temperature=candidate.lm35_temperature,
            led_level=candidate.led_level,
            timestamp=now,
        )
        self._next_reading_id += 1
        self._readings[reading.id] = reading
        pruned = self._prune(now)
        try:
            await self._persist()
        except StorageUnavailableError:
            # the write never happened: drop the insert and bring back what it pruned
            self._readings.pop(reading.id, None)
            for old in pruned:
                self._readings[old.id] = old
            if self._next_reading_id == reading.id + 1:
                self._next_reading_id = reading.id
            raise
        return reading.model_copy(deep=True)

    async def get_recent_sensor_readings(self, limit: object = DEFAULT_RECENT_LIMIT) -> list[SensorReading]:
        count = normalize_limit(limit)
        ordered = sorted(self._readings.values(), key=_ordering_key, reverse=True)
        return [reading.model_copy(deep=True) for reading in ordered[:count]]

    async def get_latest_sensor_reading(self) -> Optional[SensorReading]:
        if not self._readings:
            return None
        latest = max(self._readings.values(), key=_ordering_key)
        return latest.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._readings)

    def _prune(self, now: datetime) -> list[SensorReading]:
        """Apply retention and return the readings it removed."""
        removed: list[SensorReading] = []
        if self.max_age is not None:
            cutoff = now - timedelta(seconds=self.max_age)
            removed.extend(
                reading for reading in self._readings.values() if reading.timestamp < cutoff
            )
            for reading in removed:
                del self._readings[reading.id]

        if self.max_readings is not None and len(self._readings) > self.max_readings:
            overflow = len(self._readings) - self.max_readings
            oldest = sorted(self._readings.values(), key=_ordering_key)[:overflow]
            for reading in oldest:
                del self._readings[reading.id]
            removed.extend(oldest)
        return removed

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "next_user_id": self._next_user_id,
            "next_reading_id": self._next_reading_id,
            "users": [user.model_dump(mode="json") for user in self._users.values()],
            "readings": [
                reading.model_dump(mode="json", by_alias=True)
                for reading in self._readings.values()
            ],
        }

    async def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = json.dumps(self._snapshot(), indent=2, sort_keys=True)
        async with self._write_lock:
            try:
                await asyncio.to_thread(self.persistence_path.write_text, payload)
            except OSError as exc:
                raise StorageUnavailableError(
                    f"Could not write reading store snapshot to {self.persistence_path}."
                ) from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
            users = [User.model_validate(item) for item in data.get("users", [])]
            readings = [SensorReading.model_validate(item) for item in data.get("readings", [])]
        except (OSError, json.JSONDecodeError, AttributeError, ValidationError) as exc:
            logger.warning(
                "Ignoring unreadable reading store snapshot at %s",
                self.persistence_path,
                extra={"reason": type(exc).__name__},
            )
            return

        self._users = {user.id: user for user in users}
        self._readings = {reading.id: reading for reading in readings}
        # ids are never reused, even for readings already pruned
        self._next_user_id = max([data.get("next_user_id", 1), *(uid + 1 for uid in self._users)])
        self._next_reading_id = max(
            [data.get("next_reading_id", 1), *(rid + 1 for rid in self._readings)]
        )


def _resolve_persistence_path(url: str) -> Optional[Path]:
    parts = urlsplit(url)
    if parts.scheme == "memory":
        return None
    if parts.scheme == "file":
        location = f"{parts.netloc}{parts.path}"
        if not location:
            raise ConfigurationError(f"Store URL {url!r} has no file path.")
        return Path(location)
    raise ConfigurationError(f"Unsupported reading store URL scheme in {url!r}.")


@lru_cache
def build_default_store(url: Optional[str] = None) -> ReadingStore:
    """Factory that builds the store named by ``READINGS_STORE_URL``."""
    settings = get_settings()
    store_url = settings.store_url if url is None else url
    if store_url is None:
        if settings.store_required:
            raise ConfigurationError("READINGS_STORE_URL must be set for a durable deployment.")
        logger.warning("No persistence configured; readings are kept in memory only.")
        path = None
    else:
        path = _resolve_persistence_path(store_url)
    return MemoryReadingStore(
        persistence_path=path,
        max_readings=settings.retention_count,
        max_age=settings.retention_seconds,
    )
