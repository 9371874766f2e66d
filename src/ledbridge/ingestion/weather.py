"""Weather ingestion: current conditions for the configured location."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from ledbridge.formatting import format_weather
from ledbridge.ingestion.scheduler import IngestionScheduler, SchedulerPhase
from ledbridge.logging import get_logger
from ledbridge.models import Location, WeatherRecord
from ledbridge.normalization import normalize_weather

if TYPE_CHECKING:
    from ledbridge.broker.connection import BrokerConnection
    from ledbridge.config import TopicSettings
    from ledbridge.providers.client import WeatherProvider
    from ledbridge.storage.store import PersistenceGateway

logger = get_logger(__name__)

DEFAULT_WEATHER_INTERVAL = 300.0


class WeatherScheduler(IngestionScheduler[WeatherRecord]):
    """Fetch, normalize, persist and publish current weather.

    Each cycle publishes the raw record as JSON on the weather raw topic
    and the rendered display line on the weather LED topic.
    """

    domain = "weather"

    def __init__(
        self,
        provider: WeatherProvider,
        gateway: PersistenceGateway,
        broker: BrokerConnection,
        topics: TopicSettings,
        location: Location,
        interval: float = DEFAULT_WEATHER_INTERVAL,
    ) -> None:
        super().__init__(broker, interval)
        self._provider = provider
        self._gateway = gateway
        self._topics = topics
        self._location = location

    @property
    def location(self) -> Location:
        return self._location

    def set_location(self, location: Location) -> None:
        """Change the location used by subsequent cycles."""
        self._location = location
        logger.info(
            "weather_location_updated",
            latitude=location.latitude,
            longitude=location.longitude,
        )

    async def trigger(self, location: Location | None = None) -> WeatherRecord:
        """Run a cycle now, optionally switching location first."""
        if location is not None:
            self.set_location(location)
        return await self.run_once(trigger="on_demand")

    async def _cycle(self) -> WeatherRecord:
        location = self._location

        self._enter(SchedulerPhase.FETCHING)
        response = await self._provider.fetch_current(location)

        self._enter(SchedulerPhase.NORMALIZING)
        record = normalize_weather(response, location)

        self._enter(SchedulerPhase.PERSISTING)
        row_id = await self._gateway.insert_weather(record)

        self._enter(SchedulerPhase.PUBLISHING)
        if await self._publish(self._topics.weather_raw, json.dumps(record.to_dict())):
            await self._publish(self._topics.weather_led, format_weather(record))

        logger.info(
            "weather_cycle_complete",
            row_id=row_id,
            temperature=record.temperature,
            description=record.description,
        )
        return record
