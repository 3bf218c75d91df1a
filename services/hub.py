"""Fan-out of stored readings to live dashboard connections."""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Optional, Protocol, Set

from fastapi.websockets import WebSocketState

from app.schemas import ConnectionStatusEnvelope, SensorDataEnvelope, SensorReading
from datastore.base import ReadingStore
from datastore.memory import build_default_store
from errors import StorageUnavailableError

logger = logging.getLogger(__name__)


class LiveConnection(Protocol):
    client_state: WebSocketState
    application_state: WebSocketState

    async def send_text(self, data: str) -> None:
        ...


def is_open(handle: LiveConnection) -> bool:
    return (
        handle.client_state == WebSocketState.CONNECTED
        and handle.application_state == WebSocketState.CONNECTED
    )


class BroadcastHub:
    """Tracks live connections and pushes every stored reading to them.

    There is no per-connection queue: each send goes straight to the
    transport, and slow consumers are never throttled.
    """

    def __init__(self, store: ReadingStore) -> None:
        self.store = store
        self._connections: Set[LiveConnection] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def is_registered(self, handle: LiveConnection) -> bool:
        return handle in self._connections

    async def connect(self, handle: LiveConnection) -> None:
        """Register a connection and send it the current state.

        The snapshot is best effort: a reading broadcast between registration
        and the snapshot fetch may reach this connection twice or out of order.
        """
        self._connections.add(handle)
        logger.info("Live client connected", extra={"connections": self.connection_count})
        await handle.send_text(ConnectionStatusEnvelope().model_dump_json())

        try:
            latest = await self.store.get_latest_sensor_reading()
        except StorageUnavailableError as exc:
            logger.warning("Skipping initial snapshot", extra={"reason": str(exc)})
            return

        if latest is None:
            return
        if not self.is_registered(handle) or not is_open(handle):
            return
        await handle.send_text(SensorDataEnvelope(data=latest).to_json())

    def disconnect(self, handle: LiveConnection) -> None:
        if handle not in self._connections:
            return
        self._connections.discard(handle)
        logger.info("Live client disconnected", extra={"connections": self.connection_count})

    def on_error(self, handle: LiveConnection, exc: Optional[BaseException] = None) -> None:
        logger.warning(
            "Live connection error",
            extra={"reason": repr(exc) if exc is not None else None},
        )
        self.disconnect(handle)

    async def broadcast(self, reading: SensorReading) -> int:
        """Send ``reading`` to every open connection; return the delivery count."""
        message = SensorDataEnvelope(data=reading).to_json()
        # closed handles stay registered until their disconnect signal arrives
        targets = [handle for handle in list(self._connections) if is_open(handle)]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(handle.send_text(message) for handle in targets),
            return_exceptions=True,
        )
        delivered = 0
        for handle, result in zip(targets, results):
            if isinstance(result, BaseException):
                self.on_error(handle, result)
            else:
                delivered += 1
        logger.debug(
            "Broadcast reading",
            extra={"reading_id": reading.id, "connections": delivered},
        )
        return delivered


@lru_cache
def build_default_hub() -> BroadcastHub:
    return BroadcastHub(store=build_default_store())
