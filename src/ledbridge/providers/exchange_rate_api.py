"""ExchangeRate-API provider.

Without a key the free v4 endpoint is used and answers `{base, rates}`.
With a key the v6 endpoint is used and answers `{base_code, conversion_rates}`.
"""

from typing import Any

from ledbridge.config import ApiSettings
from ledbridge.logging import get_logger
from ledbridge.providers.client import ExchangeRateProvider
from ledbridge.providers.http import HttpJsonClient

logger = get_logger(__name__)


class ExchangeRateApiClient(ExchangeRateProvider):
    """Fetches the full latest rate table in one request."""

    def __init__(self, http: HttpJsonClient, settings: ApiSettings) -> None:
        self._http = http
        self._settings = settings

    @property
    def has_api_key(self) -> bool:
        return self._settings.has_exchange_api_key

    def _url(self) -> str:
        if self.has_api_key:
            return self._settings.exchange_keyed_url.format(
                api_key=self._settings.exchange_api_key.get_secret_value(),
                base=self._settings.exchange_base,
            )
        return self._settings.exchange_url

    async def fetch_latest(self) -> dict[str, Any]:
        tier = "keyed" if self.has_api_key else "free"
        logger.info("fetching_exchange_rates", tier=tier, base=self._settings.exchange_base)
        return await self._http.get_json(self._url(), label=f"exchangerate-api ({tier})")
