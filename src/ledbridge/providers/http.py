"""Shared aiohttp session wrapper for upstream JSON APIs.

Every failure mode (transport error, timeout, non-2xx status, body that is
not a JSON object) surfaces as FetchError so ingestion cycles have a single
exception to abort on.
"""

import asyncio
import json
from typing import Any

import aiohttp

from ledbridge.exceptions import FetchError
from ledbridge.logging import get_logger

logger = get_logger(__name__)


class HttpJsonClient:
    """GET-only JSON client with an explicit session lifecycle.

    Usage:
        http = HttpJsonClient(timeout=15.0)
        await http.connect()
        try:
            data = await http.get_json(url, params={...}, label="open-meteo")
        finally:
            await http.close()
    """

    def __init__(
        self,
        timeout: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def connect(self) -> None:
        """Create the underlying session if one was not injected."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
            logger.debug("http_session_opened", timeout=self._timeout)

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            logger.debug("http_session_closed")
        if self._owns_session:
            self._session = None

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        label: str = "upstream",
    ) -> dict[str, Any]:
        """GET a URL and return the decoded JSON object.

        `label` names the provider in errors and logs so URLs carrying API
        keys are never written out.
        """
        if self._session is None:
            await self.connect()
        assert self._session is not None

        try:
            async with self._session.get(url, params=params) as response:
                if not 200 <= response.status < 300:
                    raise FetchError(
                        f"{label} returned HTTP {response.status}",
                        status=response.status,
                    )
                try:
                    data = await response.json(content_type=None)
                except (json.JSONDecodeError, ValueError) as exc:
                    raise FetchError(f"{label} returned a non-JSON body") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            error = str(exc) or type(exc).__name__
            logger.warning("http_fetch_failed", provider=label, error=error)
            raise FetchError(f"{label} request failed: {error}") from exc

        if not isinstance(data, dict):
            raise FetchError(f"{label} returned {type(data).__name__}, expected an object")

        logger.debug("http_fetch_ok", provider=label)
        return data
