"""Entry point for the LED feed bridge.

Wires all components together and either embeds the FastAPI control API
or runs headless. With the API enabled (default) the bridge and the API
share a single asyncio event loop via uvicorn's programmatic API and
FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown in headless mode; uvicorn
installs its own handlers otherwise.

Component wiring order (in _build_components):
1. BridgeDatabase and PersistenceGateway (storage)
2. BrokerConnection (MQTT link)
3. HttpJsonClient and the upstream providers
4. WeatherScheduler and ExchangeScheduler (ingestion)
5. DisplayPublisher (operator-initiated display output)
6. BridgeService (lifecycle facade)
"""

import asyncio
import signal
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from ledbridge.broker.connection import BrokerConnection
from ledbridge.config import AppSettings
from ledbridge.exceptions import ConnectError, StorageError
from ledbridge.ingestion.exchange import ExchangeScheduler
from ledbridge.ingestion.weather import WeatherScheduler
from ledbridge.logging import get_logger, setup_logging
from ledbridge.models import Location
from ledbridge.providers.exchange_rate_api import ExchangeRateApiClient
from ledbridge.providers.http import HttpJsonClient
from ledbridge.providers.open_meteo import OpenMeteoClient
from ledbridge.publisher import DisplayPublisher
from ledbridge.service import BridgeService
from ledbridge.storage.database import BridgeDatabase
from ledbridge.storage.store import PersistenceGateway


def _build_components(settings: AppSettings) -> BridgeService:
    """Build the full dependency graph from settings.

    Note: Nothing is opened or connected here -- that happens in
    BridgeService.start(), called from the lifespan or from run().
    """
    logger = get_logger("ledbridge.main")

    # 1. Storage
    database = BridgeDatabase(settings.database.path)
    gateway = PersistenceGateway(database)

    # 2. Broker link
    broker = BrokerConnection(settings.mqtt, gateway)

    # 3. Upstream providers share one HTTP session
    http = HttpJsonClient(timeout=settings.api.request_timeout)
    weather_provider = OpenMeteoClient(http, settings.api)
    exchange_provider = ExchangeRateApiClient(http, settings.api)
    if not exchange_provider.has_api_key:
        logger.info("exchange_api_key_not_configured", tier="free")

    # 4. Ingestion
    weather = WeatherScheduler(
        provider=weather_provider,
        gateway=gateway,
        broker=broker,
        topics=settings.topics,
        location=Location(
            latitude=settings.scheduler.default_latitude,
            longitude=settings.scheduler.default_longitude,
        ),
        interval=settings.scheduler.weather_interval,
    )
    exchange = ExchangeScheduler(
        provider=exchange_provider,
        gateway=gateway,
        broker=broker,
        topics=settings.topics,
        watch_list=settings.scheduler.watch_list,
        interval=settings.scheduler.exchange_interval,
    )

    # 5. Display output
    publisher = DisplayPublisher(
        broker=broker,
        gateway=gateway,
        topics=settings.topics,
        timezone=settings.scheduler.timezone,
    )

    # 6. Facade
    return BridgeService(
        database=database,
        gateway=gateway,
        broker=broker,
        http=http,
        weather=weather,
        exchange=exchange,
        publisher=publisher,
    )


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM to set stop_event.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("ledbridge.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the bridge with the API server and stop it on shutdown.

    Startup failures (database or broker) propagate so uvicorn aborts.
    """
    logger = get_logger("ledbridge.main")
    service: BridgeService = app.state.service

    try:
        await service.start()
    except (ConnectError, StorageError):
        await service.stop()
        raise

    logger.info("lifespan_started")

    yield

    await service.stop()
    logger.info("ledbridge_stopped")


async def run() -> int:
    """Run the bridge; returns the process exit code.

    When the server is enabled (SERVER_ENABLED=true, the default):
    - Creates the FastAPI app with lifespan
    - Runs the bridge and the API in one event loop via uvicorn

    When the server is disabled (SERVER_ENABLED=false):
    - Runs the schedulers until SIGINT/SIGTERM
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("ledbridge.main")

    # 3. Build all components
    service = _build_components(settings)

    if settings.server.enabled:
        from ledbridge.api.app import create_app

        app = create_app(lifespan=lifespan, cors_origins=settings.server.cors_origins)
        app.state.service = service

        logger.info(
            "starting_with_api",
            host=settings.server.host,
            port=settings.server.port,
        )

        config = uvicorn.Config(
            app,
            host=settings.server.host,
            port=settings.server.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
        # uvicorn reports a failed lifespan startup through server.started
        return 0 if server.started else 1

    logger.info("starting_headless", watch_list=settings.scheduler.watch_list)

    stop_event = asyncio.Event()
    _setup_signal_handlers(stop_event)

    try:
        await service.start()
    except (ConnectError, StorageError) as e:
        logger.critical("startup_failed", error=str(e))
        await service.stop()
        return 1

    try:
        await stop_event.wait()
    finally:
        await service.stop()
        logger.info("ledbridge_stopped")
    return 0


def main() -> None:
    """Synchronous entry point."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
