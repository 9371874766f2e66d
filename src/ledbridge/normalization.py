"""Normalization of upstream responses into canonical records.

Each provider schema is matched against the shapes it is known to produce;
anything else falls through to SchemaError. Optional numeric fields that
are missing or malformed become 0, unknown weather codes become "Unknown".
"""

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from ledbridge.exceptions import InvalidRateError, SchemaError
from ledbridge.logging import get_logger
from ledbridge.models import ExchangeRecord, Location, RateTable, WeatherRecord, utc_now

logger = get_logger(__name__)

UNKNOWN_DESCRIPTION = "Unknown"
DEFAULT_BASE_CURRENCY = "USD"

# WMO weather interpretation codes as emitted by Open-Meteo
WEATHER_DESCRIPTIONS: dict[int, str] = {
    0: "Clear",
    1: "Mainly Clear",
    2: "Partly Cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Depositing Rime Fog",
    51: "Light Drizzle",
    53: "Moderate Drizzle",
    55: "Dense Drizzle",
    56: "Light Freezing Drizzle",
    57: "Dense Freezing Drizzle",
    61: "Slight Rain",
    63: "Moderate Rain",
    65: "Heavy Rain",
    66: "Light Freezing Rain",
    67: "Heavy Freezing Rain",
    71: "Slight Snow",
    73: "Moderate Snow",
    75: "Heavy Snow",
    77: "Snow Grains",
    80: "Slight Rain Showers",
    81: "Moderate Rain Showers",
    82: "Violent Rain Showers",
    85: "Slight Snow Showers",
    86: "Heavy Snow Showers",
    95: "Thunderstorm",
    96: "Thunderstorm with Hail",
    99: "Thunderstorm with Heavy Hail",
}


def describe_weather_code(code: Any) -> str:
    """Map a weather code to its description; anything unrecognized is "Unknown"."""
    if isinstance(code, bool):
        return UNKNOWN_DESCRIPTION
    if isinstance(code, float) and code.is_integer():
        code = int(code)
    if not isinstance(code, int):
        return UNKNOWN_DESCRIPTION
    return WEATHER_DESCRIPTIONS.get(code, UNKNOWN_DESCRIPTION)


def normalize_weather(
    response: Any,
    location: Location | None = None,
    observed_at: datetime | None = None,
) -> WeatherRecord:
    """Convert an Open-Meteo current-conditions response into a WeatherRecord.

    Coordinates come from the requested location when given (the provider
    snaps them to its grid), otherwise from the response.

    Raises:
        SchemaError: The response has no `current` object.
    """
    if not isinstance(response, dict):
        raise SchemaError(f"weather response is not an object: {type(response).__name__}")
    current = response.get("current")
    if not isinstance(current, dict):
        raise SchemaError("weather response has no 'current' block")

    if location is not None:
        latitude, longitude = location.latitude, location.longitude
    else:
        latitude = _as_float(response.get("latitude"))
        longitude = _as_float(response.get("longitude"))

    return WeatherRecord(
        latitude=latitude,
        longitude=longitude,
        temperature=_as_float(current.get("temperature_2m")),
        humidity=_as_float(current.get("relative_humidity_2m")),
        pressure=_as_float(current.get("pressure_msl")),
        wind_speed=_as_float(current.get("wind_speed_10m")),
        description=describe_weather_code(current.get("weather_code")),
        observed_at=observed_at or _observation_time(response, current),
    )


def normalize_exchange(response: Any, has_api_key: bool) -> RateTable:
    """Detect which rate-table shape the provider returned.

    Keyed tier: `{base_code, conversion_rates}` or `{base, rates}`.
    Free tier: `{base, rates}`.

    Raises:
        SchemaError: None of the recognized rate fields is present.
    """
    if not isinstance(response, dict):
        raise SchemaError(f"exchange response is not an object: {type(response).__name__}")
    if has_api_key and isinstance(response.get("conversion_rates"), dict):
        return RateTable(
            base=_currency_code(response.get("base_code")),
            rates=dict(response["conversion_rates"]),
        )
    if isinstance(response.get("rates"), dict):
        return RateTable(
            base=_currency_code(response.get("base")),
            rates=dict(response["rates"]),
        )

    expected = "'conversion_rates' or 'rates'" if has_api_key else "'rates'"
    raise SchemaError(f"exchange response has no {expected} table")


def build_exchange_records(
    table: RateTable,
    watch_list: list[str],
    observed_at: datetime | None = None,
) -> list[ExchangeRecord]:
    """Select watch-list currencies from a rate table, in watch-list order.

    Currencies absent from the table are skipped. Every rate is validated
    before any record is returned, so a bad value rejects the whole cycle.

    Raises:
        InvalidRateError: A watched currency has a zero, negative or
            non-numeric rate.
    """
    observed_at = observed_at or utc_now()
    records: list[ExchangeRecord] = []

    for code in watch_list:
        target = code.upper()
        if target not in table.rates:
            logger.debug("currency_not_in_table", currency=target, base=table.base)
            continue

        raw = table.rates[target]
        rate = _as_decimal(raw)
        if rate is None or rate <= 0:
            raise InvalidRateError(
                f"invalid rate for {table.base}/{target}: {raw!r}"
            )

        records.append(
            ExchangeRecord(
                base_currency=table.base,
                target_currency=target,
                rate=rate,
                observed_at=observed_at,
            )
        )

    return records


def _as_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    try:
        number = float(value)
    except OverflowError:
        return 0.0
    # JSON like 1e999 decodes to inf
    return number if math.isfinite(number) else 0.0


def _as_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        return None
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        return None
    return rate if rate.is_finite() else None


def _currency_code(value: Any) -> str:
    if isinstance(value, str) and len(value.strip()) == 3:
        return value.strip().upper()
    return DEFAULT_BASE_CURRENCY


def _observation_time(response: dict[str, Any], current: dict[str, Any]) -> datetime:
    """Read `current.time` (local to the location) and convert it to UTC."""
    raw = current.get("time")
    if not isinstance(raw, str):
        return utc_now()
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return utc_now()
    if parsed.tzinfo is None:
        offset = response.get("utc_offset_seconds")
        offset_seconds = offset if isinstance(offset, int) and not isinstance(offset, bool) else 0
        parsed = parsed.replace(tzinfo=timezone(timedelta(seconds=offset_seconds)))
    return parsed.astimezone(timezone.utc)
