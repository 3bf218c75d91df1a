import time
from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from app.api import get_reading_service
from app.main import create_app
from app.schemas import SensorReading
from datastore.base import ReadingStore
from datastore.memory import build_default_store
from errors import StorageUnavailableError
from services.hub import build_default_hub
from services.intake import build_default_intake
from services.readings import ReadingService, build_default_reading_service
from settings import get_settings

VALID_PAYLOAD = b'{"suhuDHT": 26.5, "suhuLM35": 27.1, "LED": 2}'


class UnavailableStore(ReadingStore):
    async def create_user(self, candidate):
        raise StorageUnavailableError("database unreachable at 10.0.0.5")

    async def get_user(self, user_id):
        raise StorageUnavailableError("database unreachable at 10.0.0.5")

    async def get_user_by_username(self, username):
        raise StorageUnavailableError("database unreachable at 10.0.0.5")

    async def create_sensor_reading(self, candidate):
        raise StorageUnavailableError("database unreachable at 10.0.0.5")

    async def get_recent_sensor_readings(self, limit=20):
        raise StorageUnavailableError("database unreachable at 10.0.0.5")

    async def get_latest_sensor_reading(self) -> Optional[SensorReading]:
        raise StorageUnavailableError("database unreachable at 10.0.0.5")


def _clear_caches() -> None:
    for cache in (
        build_default_intake,
        build_default_reading_service,
        build_default_hub,
        build_default_store,
        get_settings,
    ):
        cache.cache_clear()


@pytest.fixture
def api_client(monkeypatch) -> Iterator[TestClient]:
    monkeypatch.setenv("MQTT_ENABLED", "false")
    monkeypatch.delenv("READINGS_STORE_URL", raising=False)
    monkeypatch.delenv("READINGS_STORE_REQUIRED", raising=False)
    _clear_caches()

    app = create_app()
    with TestClient(app) as client:
        yield client

    _clear_caches()


def _publish(payload: bytes) -> None:
    build_default_intake().submit("iot/telemetry", payload)


def _wait_for_stored(count: int, timeout: float = 5.0) -> None:
    intake = build_default_intake()
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if intake.stats.stored + intake.stats.rejected >= count:
            return
        time.sleep(0.02)
    pytest.fail(f"Intake did not handle {count} messages: {intake.stats}")


def test_latest_returns_404_on_empty_store(api_client: TestClient) -> None:
    response = api_client.get("/api/readings/latest")

    assert response.status_code == 404
    assert response.json() == {"error": "No readings available"}


def test_intake_reading_is_served_and_pushed_live(api_client: TestClient) -> None:
    with api_client.websocket_connect("/ws") as websocket:
        assert websocket.receive_json() == {"type": "connection_status", "status": "connected"}

        _publish(VALID_PAYLOAD)
        envelope = websocket.receive_json()

    assert envelope["type"] == "sensor_data"
    assert envelope["data"]["dhtTemperature"] == 26.5
    assert envelope["data"]["lm35Temperature"] == 27.1
    assert envelope["data"]["ledLevel"] == 2

    response = api_client.get("/api/readings/latest")
    assert response.status_code == 200
    assert response.json() == envelope["data"]
    assert set(response.json()) == {"id", "dhtTemperature", "lm35Temperature", "ledLevel", "timestamp"}


def test_late_joiner_gets_snapshot_of_latest(api_client: TestClient) -> None:
    _publish(b'{"suhuDHT": 19.0, "LED": 0}')
    _publish(VALID_PAYLOAD)
    _wait_for_stored(2)

    with api_client.websocket_connect("/ws") as websocket:
        status_message = websocket.receive_json()
        snapshot = websocket.receive_json()

    assert status_message == {"type": "connection_status", "status": "connected"}
    assert snapshot["type"] == "sensor_data"
    assert snapshot["data"]["id"] == 2
    assert snapshot["data"]["ledLevel"] == 2


def test_every_live_client_receives_the_same_reading(api_client: TestClient) -> None:
    with api_client.websocket_connect("/ws") as first, api_client.websocket_connect("/ws") as second:
        first.receive_json()
        second.receive_json()
        assert build_default_hub().connection_count == 2

        _publish(VALID_PAYLOAD)
        received = [first.receive_json(), second.receive_json()]

    assert received[0] == received[1]
    assert received[0]["type"] == "sensor_data"


def test_malformed_telemetry_is_dropped(api_client: TestClient) -> None:
    _publish(b'{"suhuDHT": "warm"}')
    _publish(b'{"LED": 1}')
    _wait_for_stored(2)

    readings = api_client.get("/api/readings/recent").json()

    assert len(readings) == 1
    assert readings[0]["ledLevel"] == 1
    assert readings[0]["dhtTemperature"] is None


def test_recent_orders_newest_first_and_honours_limit(api_client: TestClient) -> None:
    for level in range(3):
        _publish(f'{{"LED": {level}}}'.encode())
    _wait_for_stored(3)

    response = api_client.get("/api/readings/recent", params={"limit": 2})

    assert response.status_code == 200
    assert [reading["id"] for reading in response.json()] == [3, 2]


@pytest.mark.parametrize("limit", ["0", "-4", "abc", ""])
def test_recent_invalid_limit_behaves_like_absent(api_client: TestClient, limit: str) -> None:
    for _ in range(25):
        _publish(b"{}")
    _wait_for_stored(25)

    defaulted = api_client.get("/api/readings/recent").json()
    response = api_client.get("/api/readings/recent", params={"limit": limit})

    assert response.status_code == 200
    assert len(defaulted) == 20
    assert response.json() == defaulted


def test_storage_failure_returns_generic_500(api_client: TestClient) -> None:
    api_client.app.dependency_overrides[get_reading_service] = lambda: ReadingService(UnavailableStore())
    try:
        recent = api_client.get("/api/readings/recent")
        latest = api_client.get("/api/readings/latest")
    finally:
        api_client.app.dependency_overrides.clear()

    assert recent.status_code == 500
    assert recent.json() == {"error": "Failed to fetch readings"}
    assert latest.status_code == 500
    assert latest.json() == {"error": "Failed to fetch latest reading"}
    assert "10.0.0.5" not in recent.text


def test_health_reports_intake_and_live_counts(api_client: TestClient) -> None:
    _publish(VALID_PAYLOAD)
    _publish(b"nope")
    _wait_for_stored(2)

    with api_client.websocket_connect("/ws") as websocket:
        websocket.receive_json()
        websocket.receive_json()
        payload = api_client.get("/health").json()

    assert payload == {
        "status": "ok",
        "mqtt_connected": False,
        "live_clients": 1,
        "messages_received": 2,
        "readings_stored": 1,
        "messages_rejected": 1,
    }


def test_unknown_route_uses_error_body(api_client: TestClient) -> None:
    response = api_client.get("/api/nothing-here")

    assert response.status_code == 404
    assert "error" in response.json()


class BrokenStore(UnavailableStore):
    async def get_recent_sensor_readings(self, limit=20):
        raise RuntimeError("cursor closed on 10.0.0.5")


def test_unexpected_error_returns_generic_500(api_client: TestClient) -> None:
    api_client.app.dependency_overrides[get_reading_service] = lambda: ReadingService(BrokenStore())
    try:
        client = TestClient(api_client.app, raise_server_exceptions=False)
        response = client.get("/api/readings/recent")
    finally:
        api_client.app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert "10.0.0.5" not in response.text
