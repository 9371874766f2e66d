"""Shared test fixtures for the LED feed bridge."""

import asyncio
import copy
from types import SimpleNamespace
from typing import Any

import aiomqtt
import pytest
import pytest_asyncio

from ledbridge.config import (
    ApiSettings,
    AppSettings,
    MqttSettings,
    SchedulerSettings,
    TopicSettings,
)
from ledbridge.storage.database import BridgeDatabase
from ledbridge.storage.store import PersistenceGateway

# ---------------------------------------------------------------------------
# Sample upstream payloads
# ---------------------------------------------------------------------------

OPEN_METEO_RESPONSE: dict[str, Any] = {
    "latitude": 10.75,
    "longitude": 106.625,
    "utc_offset_seconds": 25200,
    "timezone": "Asia/Bangkok",
    "current": {
        "time": "2024-06-01T14:00",
        "interval": 900,
        "temperature_2m": 31.4,
        "relative_humidity_2m": 70,
        "pressure_msl": 1008.2,
        "weather_code": 2,
        "wind_speed_10m": 12.5,
    },
}

FREE_TIER_RATES: dict[str, Any] = {
    "base": "USD",
    "date": "2024-06-01",
    "rates": {
        "USD": 1,
        "VND": 24567.891,
        "EUR": 0.92,
        "GBP": 0.79,
        "JPY": 156.9,
    },
}

KEYED_TIER_RATES: dict[str, Any] = {
    "result": "success",
    "base_code": "USD",
    "conversion_rates": {
        "USD": 1,
        "VND": 25410.5,
        "EUR": 0.918,
    },
}


@pytest.fixture
def open_meteo_response() -> dict[str, Any]:
    return copy.deepcopy(OPEN_METEO_RESPONSE)


@pytest.fixture
def free_tier_rates() -> dict[str, Any]:
    return copy.deepcopy(FREE_TIER_RATES)


@pytest.fixture
def keyed_tier_rates() -> dict[str, Any]:
    return copy.deepcopy(KEYED_TIER_RATES)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def topics() -> TopicSettings:
    return TopicSettings()


@pytest.fixture
def mqtt_settings() -> MqttSettings:
    """Plain-TCP broker settings with short timers for fast tests."""
    return MqttSettings(
        host="broker.test",
        port=1883,
        use_tls=False,
        client_id="ledbridge-test",
        connect_timeout=1.0,
        reconnect_delay=0.01,
        close_timeout=1.0,
        publish_timeout=1.0,
        subscribe_topics=["home/led/status"],
    )


@pytest.fixture
def mock_settings(mqtt_settings: MqttSettings, topics: TopicSettings) -> AppSettings:
    """Return AppSettings with test defaults (no API key, short intervals)."""
    return AppSettings(
        log_level="DEBUG",
        mqtt=mqtt_settings,
        topics=topics,
        api=ApiSettings(),
        scheduler=SchedulerSettings(
            weather_interval=0.01,
            exchange_interval=0.01,
            watch_list=["VND", "EUR", "GBP"],
        ),
    )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def database(tmp_path):
    """Connected BridgeDatabase in a temporary directory."""
    db = BridgeDatabase(str(tmp_path / "bridge.db"))
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def gateway(database: BridgeDatabase) -> PersistenceGateway:
    return PersistenceGateway(database)


# ---------------------------------------------------------------------------
# Fake MQTT client (stands in for aiomqtt.Client)
# ---------------------------------------------------------------------------


class FakeMqttClient:
    """In-memory aiomqtt.Client double.

    connect_error is raised on entry; hang_on_connect never completes the
    handshake. inject() queues an inbound message and drop() makes the
    message stream fail like a lost connection.
    """

    def __init__(
        self,
        connect_error: Exception | None = None,
        hang_on_connect: bool = False,
    ) -> None:
        self.connect_error = connect_error
        self.hang_on_connect = hang_on_connect
        self.published: list[dict[str, Any]] = []
        self.subscribed: list[tuple[str, int]] = []
        self.connected = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def __aenter__(self) -> "FakeMqttClient":
        if self.hang_on_connect:
            await asyncio.Event().wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.connected = False

    async def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscribed.append((topic, qos))

    async def publish(
        self,
        topic: str,
        payload: Any = None,
        qos: int = 0,
        retain: bool = False,
        timeout: float | None = None,
    ) -> None:
        self.published.append(
            {"topic": topic, "payload": payload, "qos": qos, "retain": retain}
        )

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._inbox.get()
            if isinstance(item, Exception):
                raise item
            yield item

    def inject(self, topic: str, payload: bytes) -> None:
        self._inbox.put_nowait(SimpleNamespace(topic=topic, payload=payload))

    def drop(self, reason: str = "connection lost") -> None:
        self._inbox.put_nowait(aiomqtt.MqttError(reason))

    def fail(self, error: Exception) -> None:
        """Make the message stream raise an arbitrary (non-MQTT) error."""
        self._inbox.put_nowait(error)


class FakeClientFactory:
    """client_factory double: hands out queued clients, then healthy ones."""

    def __init__(self, *queued: FakeMqttClient) -> None:
        self._queued = list(queued)
        self.clients: list[FakeMqttClient] = []

    def __call__(self) -> FakeMqttClient:
        client = self._queued.pop(0) if self._queued else FakeMqttClient()
        self.clients.append(client)
        return client


@pytest.fixture
def fake_client_cls() -> type[FakeMqttClient]:
    return FakeMqttClient


@pytest.fixture
def make_client_factory():
    """Build a FakeClientFactory seeded with pre-configured clients."""
    return FakeClientFactory


async def wait_for_condition(predicate, timeout: float = 2.0) -> None:
    """Poll predicate until it returns True or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    """Expose wait_for_condition to tests as a fixture."""
    return wait_for_condition
