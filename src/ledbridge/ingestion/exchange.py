"""Exchange-rate ingestion for the tracked currency watch list.

Each cycle persists one row per tracked currency, publishes every row as
raw JSON, and shows a single pair on the display. The pair shown rotates
through the result set one step per successful cycle.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from ledbridge.formatting import format_exchange
from ledbridge.ingestion.rotation import RotationCursor
from ledbridge.ingestion.scheduler import IngestionScheduler, SchedulerPhase
from ledbridge.logging import get_logger
from ledbridge.models import ExchangeRecord
from ledbridge.normalization import build_exchange_records, normalize_exchange

if TYPE_CHECKING:
    from ledbridge.broker.connection import BrokerConnection
    from ledbridge.config import TopicSettings
    from ledbridge.providers.client import ExchangeRateProvider
    from ledbridge.storage.store import PersistenceGateway

logger = get_logger(__name__)

DEFAULT_EXCHANGE_INTERVAL = 600.0


class ExchangeScheduler(IngestionScheduler[list[ExchangeRecord]]):
    """Fetch, normalize, persist and publish watch-list exchange rates."""

    domain = "exchange"

    def __init__(
        self,
        provider: ExchangeRateProvider,
        gateway: PersistenceGateway,
        broker: BrokerConnection,
        topics: TopicSettings,
        watch_list: list[str],
        interval: float = DEFAULT_EXCHANGE_INTERVAL,
        cursor: RotationCursor | None = None,
    ) -> None:
        super().__init__(broker, interval)
        self._provider = provider
        self._gateway = gateway
        self._topics = topics
        self._watch_list = [code.upper() for code in watch_list]
        self._cursor = cursor or RotationCursor()

    @property
    def watch_list(self) -> list[str]:
        return list(self._watch_list)

    @property
    def cursor(self) -> RotationCursor:
        return self._cursor

    async def trigger(self) -> list[ExchangeRecord]:
        """Run a cycle now and return the persisted records."""
        return await self.run_once(trigger="on_demand")

    async def _cycle(self) -> list[ExchangeRecord]:
        self._enter(SchedulerPhase.FETCHING)
        response = await self._provider.fetch_latest()

        self._enter(SchedulerPhase.NORMALIZING)
        table = normalize_exchange(response, self._provider.has_api_key)
        records = build_exchange_records(table, self._watch_list)

        # All rows are stored before the first publish
        self._enter(SchedulerPhase.PERSISTING)
        for record in records:
            await self._gateway.insert_exchange(record)

        self._enter(SchedulerPhase.PUBLISHING)
        connected = True
        for record in records:
            if not await self._publish(self._topics.exchange_raw, json.dumps(record.to_dict())):
                connected = False
                break

        shown = self._cursor.select(records)
        if shown is None:
            logger.info("exchange_cycle_empty", base=table.base, watch_list=self._watch_list)
        else:
            if connected:
                await self._publish(self._topics.exchange_led, format_exchange(shown))
            self._cursor.advance(len(records))

        logger.info(
            "exchange_cycle_complete",
            base=table.base,
            records=len(records),
            displayed=shown.target_currency if shown else None,
            cursor=self._cursor.index,
        )
        return records
