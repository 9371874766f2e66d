"""Open-Meteo current-conditions provider (free, no API key)."""

from typing import Any

from ledbridge.config import ApiSettings
from ledbridge.logging import get_logger
from ledbridge.models import Location
from ledbridge.providers.client import WeatherProvider
from ledbridge.providers.http import HttpJsonClient

logger = get_logger(__name__)

CURRENT_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "pressure_msl",
    "weather_code",
    "wind_speed_10m",
)


class OpenMeteoClient(WeatherProvider):
    """Fetches the `current` block for a latitude/longitude."""

    def __init__(self, http: HttpJsonClient, settings: ApiSettings) -> None:
        self._http = http
        self._settings = settings

    async def fetch_current(self, location: Location) -> dict[str, Any]:
        logger.info(
            "fetching_weather",
            latitude=location.latitude,
            longitude=location.longitude,
        )
        return await self._http.get_json(
            self._settings.weather_url,
            params={
                "latitude": location.latitude,
                "longitude": location.longitude,
                "current": ",".join(CURRENT_FIELDS),
                "timezone": "auto",
            },
            label="open-meteo",
        )
