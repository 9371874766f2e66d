"""Abstract upstream provider interfaces.

Schedulers depend only on these contracts, keeping provider URLs, query
parameters and authentication isolated in the concrete implementations.
Providers return the decoded JSON body untouched; shaping it is the job of
the normalization layer.
"""

from abc import ABC, abstractmethod
from typing import Any

from ledbridge.models import Location


class WeatherProvider(ABC):
    """Source of current weather conditions."""

    @abstractmethod
    async def fetch_current(self, location: Location) -> dict[str, Any]:
        """Fetch current conditions for a location.

        Raises FetchError on transport failure or non-success status.
        """
        ...


class ExchangeRateProvider(ABC):
    """Source of the latest exchange rate table."""

    @property
    @abstractmethod
    def has_api_key(self) -> bool:
        """Whether requests use the keyed tier (changes the response shape)."""
        ...

    @abstractmethod
    async def fetch_latest(self) -> dict[str, Any]:
        """Fetch the full rate table for the configured base currency.

        Raises FetchError on transport failure or non-success status.
        """
        ...
