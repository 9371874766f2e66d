"""Bridge service: lifecycle and the single entry point for operator actions.

Owns the start/stop ordering of every long-lived component and exposes the
small set of operations the HTTP adapter is allowed to invoke. Read-only
queries go straight to the persistence gateway.

Startup order: database, broker, HTTP session, schedulers.
Shutdown runs in reverse; each step is attempted even if an earlier one
fails so the database is always closed last.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from ledbridge.logging import get_logger
from ledbridge.models import (
    ConnectionState,
    DisplayMode,
    ExchangeRecord,
    LedSettings,
    Location,
    PublishAck,
    WeatherRecord,
    utc_now,
)

if TYPE_CHECKING:
    from ledbridge.broker.connection import BrokerConnection
    from ledbridge.ingestion.exchange import ExchangeScheduler
    from ledbridge.ingestion.weather import WeatherScheduler
    from ledbridge.providers.http import HttpJsonClient
    from ledbridge.publisher import DisplayPublisher
    from ledbridge.storage.database import BridgeDatabase
    from ledbridge.storage.store import PersistenceGateway

logger = get_logger(__name__)


class BridgeService:
    """Facade over the broker, schedulers, publisher and storage."""

    def __init__(
        self,
        database: BridgeDatabase,
        gateway: PersistenceGateway,
        broker: BrokerConnection,
        http: HttpJsonClient,
        weather: WeatherScheduler,
        exchange: ExchangeScheduler,
        publisher: DisplayPublisher,
    ) -> None:
        self.database = database
        self.gateway = gateway
        self.broker = broker
        self.http = http
        self.weather = weather
        self.exchange = exchange
        self.publisher = publisher
        self._started_at: datetime | None = None

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self, run_schedulers: bool = True) -> None:
        """Open storage, connect to the broker and start the timers.

        Raises:
            StorageError: The database could not be opened.
            ConnectError: The initial broker handshake failed.
        """
        await self.database.connect()
        await self.broker.connect()
        await self.http.connect()
        if run_schedulers:
            await self.weather.start()
            await self.exchange.start()
        self._started_at = utc_now()
        logger.info(
            "bridge_started",
            weather_interval=self.weather.interval,
            exchange_interval=self.exchange.interval,
            schedulers=run_schedulers,
        )

    async def stop(self) -> None:
        """Stop timers, close the broker, the HTTP session and the database."""
        steps = (
            ("weather_scheduler", self.weather.stop),
            ("exchange_scheduler", self.exchange.stop),
            ("broker", self.broker.close),
            ("http", self.http.close),
            ("database", self.database.close),
        )
        for name, step in steps:
            try:
                await step()
            except Exception:
                logger.error("shutdown_step_failed", component=name, exc_info=True)
        logger.info("bridge_stopped")

    # ──────────────────────────────────────────────
    # Operator actions
    # ──────────────────────────────────────────────

    async def trigger_weather_fetch(self, location: Location | None = None) -> WeatherRecord:
        """Run a weather cycle now, switching location first when given."""
        return await self.weather.trigger(location)

    async def trigger_exchange_fetch(self) -> list[ExchangeRecord]:
        return await self.exchange.trigger()

    async def publish_display_text(
        self, text: str, mode: DisplayMode | None = None
    ) -> PublishAck:
        return await self.publisher.publish_display_text(text, mode)

    async def publish_display_settings(self, settings: LedSettings) -> PublishAck:
        return await self.publisher.publish_display_settings(settings)

    def connection_status(self) -> ConnectionState:
        return self.broker.status()

    def get_status(self) -> dict[str, Any]:
        """Aggregate health of the broker link and both schedulers."""
        state = self.broker.status()
        return {
            "status": "ok" if self.broker.is_connected else "degraded",
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "mqtt": state.to_dict(),
            "schedulers": {
                "weather": self.weather.get_status(),
                "exchange": self.exchange.get_status(),
            },
        }
