"""Upstream REST providers -- weather and exchange-rate feeds over aiohttp."""

from ledbridge.providers.client import ExchangeRateProvider, WeatherProvider
from ledbridge.providers.exchange_rate_api import ExchangeRateApiClient
from ledbridge.providers.http import HttpJsonClient
from ledbridge.providers.open_meteo import OpenMeteoClient

__all__ = [
    "ExchangeRateApiClient",
    "ExchangeRateProvider",
    "HttpJsonClient",
    "OpenMeteoClient",
    "WeatherProvider",
]
