"""MQTT subscription that turns device telemetry into stored, broadcast readings."""

from __future__ import annotations

import asyncio
import logging
import time
from functools import lru_cache
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from app.schemas import SensorReading
from datastore.base import ReadingStore
from datastore.memory import build_default_store
from errors import DecodeError, StorageUnavailableError, UpstreamConnectionError
from models.records import IntakeStats, TelemetryMessage
from services.decoder import decode_payload
from services.hub import BroadcastHub, build_default_hub
from settings import get_settings

logger = logging.getLogger(__name__)


class TelemetryIntake:
    """Owns the broker connection and the single message-handling loop.

    paho runs its network loop on a background thread; every message is
    handed to the event loop through a queue and handled to completion,
    store write included, before the next one is taken.
    """

    def __init__(
        self,
        store: ReadingStore,
        hub: BroadcastHub,
        host: str,
        port: int,
        topic: str,
        client_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        reconnect_delay: int = 5,
        enabled: bool = True,
        client_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.store = store
        self.hub = hub
        self.host = host
        self.port = port
        self.topic = topic
        self.client_id = client_id
        self.username = username
        self.password = password
        self.keepalive = keepalive
        self.reconnect_delay = reconnect_delay
        self.enabled = enabled
        self.stats = IntakeStats()
        self._client_factory = client_factory or _build_paho_client
        self._client: Optional[Any] = None
        self._connected = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue[Optional[TelemetryMessage]]] = None
        self._consumer: Optional[asyncio.Task[None]] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume(), name="telemetry-intake")

        if not self.enabled:
            logger.info("MQTT intake disabled; not connecting to the broker.")
            return

        client = self._client_factory(self.client_id)
        if self.username:
            client.username_pw_set(self.username, self.password)
        # fixed backoff: paho retries forever at this interval
        client.reconnect_delay_set(min_delay=self.reconnect_delay, max_delay=self.reconnect_delay)
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message

        logger.info(
            "Connecting to MQTT broker %s:%d",
            self.host,
            self.port,
            extra={"client": self.client_id, "topic": self.topic},
        )
        client.connect_async(self.host, self.port, keepalive=self.keepalive)
        client.loop_start()
        self._client = client

    async def stop(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            client.disconnect()
            client.loop_stop()
        self._connected = False

        consumer, self._consumer = self._consumer, None
        if consumer is not None and self._queue is not None:
            # queued behind any hand-offs already scheduled by submit()
            asyncio.get_running_loop().call_soon(self._queue.put_nowait, None)
            await consumer
        self._queue = None
        self._loop = None

    def submit(self, topic: str, payload: bytes) -> None:
        """Queue a raw message for handling. Safe to call from any thread."""
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            logger.warning("Dropping message; intake is not running", extra={"topic": topic})
            return
        message = TelemetryMessage(topic=topic, payload=payload, received_at=time.time())
        loop.call_soon_threadsafe(queue.put_nowait, message)

    async def handle_message(self, payload: bytes, topic: Optional[str] = None) -> Optional[SensorReading]:
        """Decode, store and broadcast one message.

        Bad payloads and storage failures are logged and dropped; they never
        propagate to the caller.
        """
        self.stats.received += 1
        try:
            candidate = decode_payload(payload)
        except DecodeError as exc:
            self.stats.rejected += 1
            logger.warning(
                "Discarding malformed telemetry",
                extra={"topic": topic, "reason": str(exc)},
            )
            return None

        try:
            reading = await self.store.create_sensor_reading(candidate)
        except StorageUnavailableError as exc:
            self.stats.rejected += 1
            logger.error(
                "Could not store telemetry reading",
                extra={"topic": topic, "reason": str(exc)},
            )
            return None

        self.stats.stored += 1
        logger.info("Stored reading", extra={"reading_id": reading.id, "topic": topic})
        await self.hub.broadcast(reading)
        return reading

    async def _consume(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            message = await queue.get()
            if message is None:
                return
            try:
                await self.handle_message(message.payload, topic=message.topic)
            except Exception:
                logger.exception("Unexpected failure handling telemetry", extra={"topic": message.topic})

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            self._connected = False
            error = UpstreamConnectionError(f"Broker refused connection: {reason_code}")
            logger.error("%s", error, exc_info=error, extra={"client": self.client_id})
            return

        self._connected = True
        logger.info("Connected to MQTT broker", extra={"client": self.client_id})
        result, _mid = client.subscribe(self.topic, qos=0)
        if result != mqtt.MQTT_ERR_SUCCESS:
            # retried on the next reconnect
            logger.error(
                "Subscription request failed",
                extra={"topic": self.topic, "reason": mqtt.error_string(result)},
            )

    def _on_connect_fail(self, client, userdata) -> None:
        self._connected = False
        error = UpstreamConnectionError(f"Broker {self.host}:{self.port} unreachable")
        logger.error(
            "%s; retrying in %ds",
            error,
            self.reconnect_delay,
            exc_info=error,
            extra={"client": self.client_id},
        )

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None) -> None:
        for reason_code in reason_code_list:
            if reason_code.is_failure:
                logger.error(
                    "Broker rejected subscription",
                    extra={"topic": self.topic, "reason": str(reason_code)},
                )
            else:
                logger.info("Subscribed to topic", extra={"topic": self.topic})

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None) -> None:
        self._connected = False
        logger.warning(
            "MQTT connection closed",
            extra={"client": self.client_id, "reason": str(reason_code)},
        )

    def _on_message(self, client, userdata, message) -> None:
        if not mqtt.topic_matches_sub(self.topic, message.topic):
            return
        self.submit(message.topic, message.payload)


def _build_paho_client(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        clean_session=True,
        protocol=mqtt.MQTTv311,
    )


@lru_cache
def build_default_intake() -> TelemetryIntake:
    """Factory that wires the intake with the default store and hub."""
    settings = get_settings()
    return TelemetryIntake(
        store=build_default_store(),
        hub=build_default_hub(),
        host=settings.mqtt_host,
        port=settings.mqtt_port,
        topic=settings.mqtt_topic,
        client_id=settings.mqtt_client_id,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        keepalive=settings.mqtt_keepalive,
        reconnect_delay=settings.mqtt_reconnect_delay,
        enabled=settings.mqtt_enabled,
    )
