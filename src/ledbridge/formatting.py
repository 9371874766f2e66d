"""Display-text rendering for the LED matrix.

All functions are pure and total: they never raise on missing data and
return "No data" when there is no record to show.
"""

import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, localcontext
from zoneinfo import ZoneInfo

from ledbridge.models import ExchangeRecord, WeatherRecord

NO_DATA = "No data"
DESCRIPTION_WIDTH = 10  # characters of free text the device shows per field
MAX_TEXT_LENGTH = 100
CENT = Decimal("0.01")


def _round_half_up(value: float) -> int:
    if not math.isfinite(value):
        return 0
    return math.floor(value + 0.5)


def format_weather(record: WeatherRecord | None) -> str:
    """Render e.g. "Temp: 31C Partly Clo H:70%"."""
    if record is None:
        return NO_DATA
    temperature = _round_half_up(record.temperature or 0.0)
    description = (record.description or "")[:DESCRIPTION_WIDTH]
    humidity = _round_half_up(record.humidity or 0.0)
    return f"Temp: {temperature}C {description} H:{humidity}%"


def format_exchange(record: ExchangeRecord | None) -> str:
    """Render e.g. "USD/VND: 24567.89"."""
    if record is None:
        return NO_DATA
    base = record.base_currency or "USD"
    target = record.target_currency or "VND"
    rate = Decimal(str(record.rate or 0))
    with localcontext() as ctx:
        # Room for every integer digit plus the two decimals
        ctx.prec = max(ctx.prec, rate.adjusted() + 3)
        rate = rate.quantize(CENT, rounding=ROUND_HALF_UP)
    return f"{base}/{target}: {rate:f}"


def format_weather_summary(record: WeatherRecord | None) -> str:
    """Longer weather line for scrolling custom text, e.g. "Clear - 30.5°C - 70%"."""
    if record is None:
        return NO_DATA
    return f"{record.description} - {record.temperature:g}°C - {record.humidity:g}%"


def format_clock(now: datetime, tz: str) -> str:
    """Render local time and date as "HH:MM:SS - DD/MM/YYYY"."""
    local = now.astimezone(ZoneInfo(tz))
    return f"{local:%H:%M:%S} - {local:%d/%m/%Y}"


def truncate_text(text: str | None, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Cut text to fit the matrix buffer."""
    if not text:
        return ""
    return text[:max_length]
