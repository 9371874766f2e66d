"""Tests for WeatherScheduler and the shared scheduler lifecycle.

Provider and broker are mocked; persistence uses a real SQLite file.
"""

import asyncio
import json
from unittest.mock import AsyncMock, call

import pytest

from ledbridge.config import TopicSettings
from ledbridge.exceptions import FetchError, NotConnectedError, SchemaError, StorageError
from ledbridge.ingestion.scheduler import SchedulerPhase
from ledbridge.ingestion.weather import WeatherScheduler
from ledbridge.models import Location
from ledbridge.storage.store import PersistenceGateway, StorageDomain

HCMC = Location(latitude=10.762622, longitude=106.660172)


@pytest.fixture
def mock_broker() -> AsyncMock:
    broker = AsyncMock()
    broker.publish = AsyncMock(return_value=None)
    return broker


@pytest.fixture
def weather_provider(open_meteo_response: dict) -> AsyncMock:
    provider = AsyncMock()
    provider.fetch_current = AsyncMock(return_value=open_meteo_response)
    return provider


@pytest.fixture
def scheduler(
    weather_provider: AsyncMock,
    gateway: PersistenceGateway,
    mock_broker: AsyncMock,
    topics: TopicSettings,
) -> WeatherScheduler:
    return WeatherScheduler(
        provider=weather_provider,
        gateway=gateway,
        broker=mock_broker,
        topics=topics,
        location=HCMC,
        interval=0.01,
    )


class TestWeatherCycle:
    @pytest.mark.asyncio
    async def test_cycle_persists_and_publishes_raw_then_display(
        self,
        scheduler: WeatherScheduler,
        gateway: PersistenceGateway,
        mock_broker: AsyncMock,
        topics: TopicSettings,
    ) -> None:
        record = await scheduler.run_once()

        assert record.description == "Partly Cloudy"
        assert await gateway.count(StorageDomain.WEATHER) == 1

        raw_call, led_call = mock_broker.publish.await_args_list
        assert raw_call.args[0] == topics.weather_raw
        assert json.loads(raw_call.args[1])["temperature"] == 31.4
        assert raw_call.kwargs == {"qos": 1}
        assert led_call == call(topics.weather_led, "Temp: 31C Partly Clo H:70%", qos=1)

    @pytest.mark.asyncio
    async def test_phases_progress_and_return_to_idle(
        self, scheduler: WeatherScheduler, weather_provider: AsyncMock, open_meteo_response: dict
    ) -> None:
        seen: list[SchedulerPhase] = []

        async def fetch(location: Location) -> dict:
            seen.append(scheduler.phase)
            return open_meteo_response

        weather_provider.fetch_current.side_effect = fetch

        await scheduler.run_once()

        assert seen == [SchedulerPhase.FETCHING]
        assert scheduler.phase is SchedulerPhase.IDLE

    @pytest.mark.asyncio
    async def test_fetch_error_aborts_before_persisting(
        self,
        scheduler: WeatherScheduler,
        weather_provider: AsyncMock,
        gateway: PersistenceGateway,
        mock_broker: AsyncMock,
    ) -> None:
        weather_provider.fetch_current.side_effect = FetchError("HTTP 503", status=503)

        with pytest.raises(FetchError):
            await scheduler.run_once()

        assert await gateway.count(StorageDomain.WEATHER) == 0
        mock_broker.publish.assert_not_awaited()
        assert scheduler.phase is SchedulerPhase.IDLE
        status = scheduler.get_status()
        assert status["cycles_failed"] == 1
        assert status["last_error"] == "HTTP 503"

    @pytest.mark.asyncio
    async def test_schema_error_aborts_before_persisting(
        self, scheduler: WeatherScheduler, weather_provider: AsyncMock, gateway: PersistenceGateway
    ) -> None:
        weather_provider.fetch_current.return_value = {"latitude": 10.75}

        with pytest.raises(SchemaError):
            await scheduler.run_once()

        assert await gateway.count(StorageDomain.WEATHER) == 0

    @pytest.mark.asyncio
    async def test_storage_error_skips_publishing(
        self, scheduler: WeatherScheduler, database, mock_broker: AsyncMock
    ) -> None:
        await database.close()

        with pytest.raises(StorageError):
            await scheduler.run_once()

        mock_broker.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_broker_down_keeps_persisted_record(
        self,
        scheduler: WeatherScheduler,
        gateway: PersistenceGateway,
        mock_broker: AsyncMock,
    ) -> None:
        mock_broker.publish.side_effect = NotConnectedError("broker is reconnecting")

        record = await scheduler.run_once()

        assert record.temperature == 31.4
        assert await gateway.count(StorageDomain.WEATHER) == 1
        # Remaining publishes of the cycle are skipped
        assert mock_broker.publish.await_count == 1

    @pytest.mark.asyncio
    async def test_trigger_with_location_switches_location(
        self, scheduler: WeatherScheduler, weather_provider: AsyncMock
    ) -> None:
        hanoi = Location(latitude=21.0285, longitude=105.8542)

        record = await scheduler.trigger(hanoi)

        weather_provider.fetch_current.assert_awaited_once_with(hanoi)
        assert scheduler.location == hanoi
        assert (record.latitude, record.longitude) == (21.0285, 105.8542)

    @pytest.mark.asyncio
    async def test_set_location_applies_to_next_cycle(
        self, scheduler: WeatherScheduler, weather_provider: AsyncMock
    ) -> None:
        hanoi = Location(latitude=21.0285, longitude=105.8542)
        scheduler.set_location(hanoi)

        await scheduler.run_once()

        weather_provider.fetch_current.assert_awaited_once_with(hanoi)


class TestSchedulerTimer:
    @pytest.mark.asyncio
    async def test_timer_runs_immediately_and_repeats(
        self, scheduler: WeatherScheduler, wait_until
    ) -> None:
        await scheduler.start()
        try:
            await wait_until(lambda: scheduler.get_status()["cycles_succeeded"] >= 2)
            assert scheduler.is_running
        finally:
            await scheduler.stop()

        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_timer_survives_failed_cycle(
        self,
        scheduler: WeatherScheduler,
        weather_provider: AsyncMock,
        open_meteo_response: dict,
        wait_until,
    ) -> None:
        calls = {"n": 0}

        async def flaky(location: Location) -> dict:
            calls["n"] += 1
            if calls["n"] == 1:
                raise FetchError("timeout")
            return open_meteo_response

        weather_provider.fetch_current.side_effect = flaky

        await scheduler.start()
        try:
            await wait_until(lambda: scheduler.get_status()["cycles_succeeded"] >= 1)
        finally:
            await scheduler.stop()

        status = scheduler.get_status()
        assert status["cycles_failed"] == 1
        assert status["last_success_at"] is not None

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, scheduler: WeatherScheduler) -> None:
        await scheduler.start()
        task = scheduler._task
        await scheduler.start()
        assert scheduler._task is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_rejects_non_positive_interval(self, scheduler: WeatherScheduler) -> None:
        with pytest.raises(ValueError):
            await scheduler.start(interval=0)
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scheduler: WeatherScheduler) -> None:
        await scheduler.stop()
        assert scheduler.phase is SchedulerPhase.IDLE

    @pytest.mark.asyncio
    async def test_stop_lets_cycle_in_flight_finish(
        self,
        scheduler: WeatherScheduler,
        weather_provider: AsyncMock,
        gateway: PersistenceGateway,
        mock_broker: AsyncMock,
        open_meteo_response: dict,
        wait_until,
    ) -> None:
        release = asyncio.Event()

        async def slow_fetch(location: Location) -> dict:
            await release.wait()
            return open_meteo_response

        weather_provider.fetch_current.side_effect = slow_fetch
        await scheduler.start()
        await wait_until(lambda: scheduler.phase is SchedulerPhase.FETCHING)

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()
        release.set()
        await stopping

        assert await gateway.count(StorageDomain.WEATHER) == 1
        assert mock_broker.publish.await_count == 2
        assert scheduler.get_status()["cycles_succeeded"] == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_cycle_after_timeout(
        self,
        scheduler: WeatherScheduler,
        weather_provider: AsyncMock,
        gateway: PersistenceGateway,
        wait_until,
    ) -> None:
        async def hung_fetch(location: Location) -> dict:
            await asyncio.Event().wait()
            return {}

        weather_provider.fetch_current.side_effect = hung_fetch
        await scheduler.start()
        await wait_until(lambda: scheduler.phase is SchedulerPhase.FETCHING)

        await scheduler.stop(timeout=0.05)

        assert scheduler._task is None
        assert scheduler.phase is SchedulerPhase.IDLE
        assert await gateway.count(StorageDomain.WEATHER) == 0

    @pytest.mark.asyncio
    async def test_stop_while_waiting_for_next_tick_is_immediate(
        self, scheduler: WeatherScheduler, wait_until
    ) -> None:
        await scheduler.start(interval=60.0)
        await wait_until(lambda: scheduler._sleeping)

        await asyncio.wait_for(scheduler.stop(timeout=30.0), timeout=1.0)

        assert scheduler.get_status()["cycles_succeeded"] == 1
