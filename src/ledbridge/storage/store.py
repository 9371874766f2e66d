"""Typed SQLite read/write gateway for observations, messages and bus traffic.

PersistenceGateway isolates all SQL behind insert and paginated/filtered
read methods. Writes are serialized through one asyncio.Lock so that each
insert and its commit are atomic with respect to other coroutines; there is
no cross-table transaction.

Exchange rates are stored as TEXT and restored as Decimal on read.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

import aiosqlite

from ledbridge.exceptions import StorageError
from ledbridge.logging import get_logger
from ledbridge.models import (
    DisplayMessage,
    ExchangeRecord,
    TrafficLogEntry,
    WeatherRecord,
)
from ledbridge.storage.database import BridgeDatabase

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000


class StorageDomain(str, Enum):
    """Record kinds held by the gateway."""

    WEATHER = "weather"
    EXCHANGE = "exchange"
    MESSAGES = "messages"
    LOGS = "logs"


@dataclass(frozen=True)
class _Table:
    name: str
    filters: dict[str, str]  # filter keyword -> column


_TABLES: dict[StorageDomain, _Table] = {
    StorageDomain.WEATHER: _Table("weather", {}),
    StorageDomain.EXCHANGE: _Table(
        "exchange",
        {"base_currency": "base_currency", "target_currency": "target_currency"},
    ),
    StorageDomain.MESSAGES: _Table("messages", {"mode": "mode"}),
    StorageDomain.LOGS: _Table("logs", {"topic": "topic", "direction": "direction"}),
}


def _row_to_dict(domain: StorageDomain, row: aiosqlite.Row) -> dict[str, Any]:
    data = dict(row)
    if domain is StorageDomain.EXCHANGE:
        data["rate"] = Decimal(data["rate"])
    return data


class PersistenceGateway:
    """Async append-only store for the four record kinds.

    Wraps BridgeDatabase; every public method raises StorageError on failure.

    Usage:
        async with BridgeDatabase("data/ledbridge.db") as database:
            gateway = PersistenceGateway(database)
            row_id = await gateway.insert_weather(record)
    """

    def __init__(self, database: BridgeDatabase) -> None:
        self._database = database
        self._write_lock = asyncio.Lock()

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def insert_weather(self, record: WeatherRecord) -> int:
        """Insert one weather observation and return its row id."""
        return await self._insert(
            "INSERT INTO weather "
            "(latitude, longitude, temperature, humidity, pressure, description, wind_speed, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.latitude,
                record.longitude,
                record.temperature,
                record.humidity,
                record.pressure,
                record.description,
                record.wind_speed,
                _iso(record.observed_at),
            ),
            table="weather",
        )

    async def insert_exchange(self, record: ExchangeRecord) -> int:
        """Insert one exchange rate and return its row id."""
        return await self._insert(
            "INSERT INTO exchange (base_currency, target_currency, rate, created_at) "
            "VALUES (?, ?, ?, ?)",
            (
                record.base_currency,
                record.target_currency,
                str(record.rate),
                _iso(record.observed_at),
            ),
            table="exchange",
        )

    async def insert_message(self, message: DisplayMessage) -> int:
        """Insert one display message and return its row id."""
        return await self._insert(
            "INSERT INTO messages (message, mode, created_at) VALUES (?, ?, ?)",
            (
                message.text,
                message.mode.value if message.mode is not None else None,
                _iso(message.created_at),
            ),
            table="messages",
        )

    async def insert_log(self, entry: TrafficLogEntry) -> int:
        """Insert one traffic log entry and return its row id."""
        return await self._insert(
            "INSERT INTO logs (topic, message, direction, created_at) VALUES (?, ?, ?, ?)",
            (entry.topic, entry.payload, entry.direction.value, _iso(entry.at)),
            table="logs",
        )

    async def _insert(self, sql: str, params: tuple, table: str) -> int:
        async with self._write_lock:
            try:
                cursor = await self._database.db.execute(sql, params)
                await self._database.db.commit()
            except aiosqlite.Error as exc:
                logger.error("insert_failed", table=table, error=str(exc))
                raise StorageError(f"Insert into {table} failed: {exc}") from exc
        row_id = cursor.lastrowid
        if row_id is None:
            raise StorageError(f"Insert into {table} returned no row id")
        logger.debug("row_inserted", table=table, row_id=row_id)
        return row_id

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def latest(self, domain: StorageDomain | str, **filters: Any) -> dict[str, Any] | None:
        """Return the most recent row of a domain matching the filters, or None."""
        rows = await self.history(domain, limit=1, offset=0, **filters)
        return rows[0] if rows else None

    async def history(
        self,
        domain: StorageDomain | str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        """Return rows newest first, paginated by limit/offset.

        Accepted filters depend on the domain (exchange: base_currency,
        target_currency; messages: mode; logs: topic, direction). Every domain
        also accepts since/until datetimes. None-valued filters are ignored.
        """
        domain = StorageDomain(domain)
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        offset = max(0, int(offset))
        table = _TABLES[domain]
        where, params = _build_where(table, filters)

        sql = (
            f"SELECT * FROM {table.name} WHERE {where} "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        )
        rows = await self._fetchall(sql, [*params, limit, offset])
        return [_row_to_dict(domain, row) for row in rows]

    async def count(self, domain: StorageDomain | str, **filters: Any) -> int:
        """Count rows of a domain matching the filters."""
        domain = StorageDomain(domain)
        table = _TABLES[domain]
        where, params = _build_where(table, filters)
        rows = await self._fetchall(
            f"SELECT COUNT(*) AS total FROM {table.name} WHERE {where}", params
        )
        return int(rows[0]["total"])

    async def latest_weather(self) -> WeatherRecord | None:
        """Return the newest weather observation as a canonical record."""
        row = await self.latest(StorageDomain.WEATHER)
        if row is None:
            return None
        return WeatherRecord(
            latitude=row["latitude"],
            longitude=row["longitude"],
            temperature=row["temperature"] or 0.0,
            humidity=row["humidity"] or 0.0,
            pressure=row["pressure"] or 0.0,
            wind_speed=row["wind_speed"] or 0.0,
            description=row["description"] or "Unknown",
            observed_at=_parse_iso(row["created_at"]),
        )

    async def latest_exchange(
        self, base_currency: str, target_currency: str
    ) -> ExchangeRecord | None:
        """Return the newest stored rate for a currency pair."""
        row = await self.latest(
            StorageDomain.EXCHANGE,
            base_currency=base_currency,
            target_currency=target_currency,
        )
        if row is None:
            return None
        return ExchangeRecord(
            base_currency=row["base_currency"],
            target_currency=row["target_currency"],
            rate=row["rate"],
            observed_at=_parse_iso(row["created_at"]),
        )

    async def exchange_average(
        self,
        minutes: int,
        base_currency: str,
        target_currency: str,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Average rate for a pair over the last `minutes` minutes.

        Returns dict with count and avg_rate (Decimal, or None without data).
        Averaging happens in Python so the TEXT rates keep Decimal precision.
        """
        since = (now or datetime.now(timezone.utc)) - timedelta(minutes=minutes)
        rows = await self._fetchall(
            "SELECT rate FROM exchange "
            "WHERE base_currency = ? AND target_currency = ? AND created_at >= ?",
            [base_currency, target_currency, _iso(since)],
        )
        rates = [Decimal(row["rate"]) for row in rows]
        avg_rate = sum(rates, Decimal("0")) / len(rates) if rates else None
        return {"count": len(rates), "avg_rate": avg_rate}

    async def _fetchall(self, sql: str, params: list) -> list[aiosqlite.Row]:
        try:
            cursor = await self._database.db.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            logger.error("query_failed", error=str(exc))
            raise StorageError(f"Query failed: {exc}") from exc


def _iso(value: datetime) -> str:
    """Normalize timestamps to UTC ISO-8601 so TEXT ordering matches time ordering."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _build_where(table: _Table, filters: dict[str, Any]) -> tuple[str, list]:
    conditions = ["1=1"]
    params: list = []

    for key, value in filters.items():
        if value is None:
            continue
        if key == "since":
            conditions.append("created_at >= ?")
            params.append(_iso(value))
        elif key == "until":
            conditions.append("created_at <= ?")
            params.append(_iso(value))
        elif key in table.filters:
            conditions.append(f"{table.filters[key]} = ?")
            params.append(value.value if isinstance(value, Enum) else value)
        else:
            raise StorageError(f"Unsupported filter {key!r} for {table.name}")

    return " AND ".join(conditions), params
