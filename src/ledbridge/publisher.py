"""Operator-initiated display output: custom text, settings and one-shot views.

Scheduled weather and exchange output is published by the ingestion
schedulers; this module covers everything a user pushes to the display
directly. All display text goes to the custom message topic.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING

from ledbridge.formatting import (
    format_clock,
    format_exchange,
    format_weather_summary,
    truncate_text,
)
from ledbridge.logging import get_logger
from ledbridge.models import (
    DisplayMessage,
    DisplayMode,
    ExchangeRecord,
    LedSettings,
    PairQuote,
    PublishAck,
    WeatherRecord,
    utc_now,
)

if TYPE_CHECKING:
    from ledbridge.broker.connection import BrokerConnection
    from ledbridge.config import TopicSettings
    from ledbridge.storage.store import PersistenceGateway

logger = get_logger(__name__)

DISPLAY_QOS = 1
CROSS_CURRENCY = "USD"


class DisplayPublisher:
    """Publishes user-facing display output through the shared broker link.

    Args:
        broker: Shared broker connection.
        gateway: Stores sent messages and supplies the latest readings.
        topics: Topic names for the display device.
        timezone: IANA zone used when rendering the clock.
    """

    def __init__(
        self,
        broker: BrokerConnection,
        gateway: PersistenceGateway,
        topics: TopicSettings,
        timezone: str = "Asia/Ho_Chi_Minh",
    ) -> None:
        self._broker = broker
        self._gateway = gateway
        self._topics = topics
        self._timezone = timezone

    async def publish_display_text(
        self, text: str, mode: DisplayMode | None = None
    ) -> PublishAck:
        """Send free text to the display and keep a copy in message history.

        The message is stored only once the broker has accepted it.

        Raises:
            ValueError: The text is empty.
            NotConnectedError: The broker link is down.
        """
        text = truncate_text(text)
        if not text.strip():
            raise ValueError("display text must not be empty")

        ack = await self._broker.publish(self._topics.custom_message, text, qos=DISPLAY_QOS)
        await self._gateway.insert_message(DisplayMessage(text=text, mode=mode))
        logger.info("display_text_published", text=text, mode=mode.value if mode else None)
        return ack

    async def publish_display_settings(self, settings: LedSettings) -> PublishAck:
        """Push mode/speed/brightness to the device as a JSON object."""
        payload = json.dumps(settings.to_dict())
        ack = await self._broker.publish(self._topics.led_settings, payload, qos=DISPLAY_QOS)
        logger.info("display_settings_published", **settings.to_dict())
        return ack

    async def quote_pair(self, base: str, target: str) -> PairQuote | None:
        """Latest stored rate for base/target.

        When the pair was never fetched directly and neither side is USD,
        derive it from the stored USD rates: (USD/target) / (USD/base).
        """
        base, target = base.upper(), target.upper()
        record = await self._gateway.latest_exchange(base, target)
        if record is not None:
            return PairQuote(record=record)
        if CROSS_CURRENCY in (base, target):
            return None

        usd_base = await self._gateway.latest_exchange(CROSS_CURRENCY, base)
        usd_target = await self._gateway.latest_exchange(CROSS_CURRENCY, target)
        if usd_base is None or usd_target is None:
            return None

        rate = usd_target.rate / usd_base.rate
        logger.info("exchange_pair_converted", base=base, target=target, rate=str(rate))
        return PairQuote(
            record=ExchangeRecord(
                base_currency=base,
                target_currency=target,
                rate=rate,
                observed_at=min(usd_base.observed_at, usd_target.observed_at),
            ),
            converted=True,
        )

    async def display_exchange_pair(self, base: str, target: str) -> PairQuote | None:
        """Show one pair on the display. Returns None when no rate is known."""
        quote = await self.quote_pair(base, target)
        if quote is None:
            logger.info("exchange_pair_unavailable", base=base, target=target)
            return None
        await self.publish_display_text(format_exchange(quote.record))
        return quote

    async def display_clock(self, now: datetime | None = None) -> str:
        """Show local time and date; returns the text sent."""
        text = format_clock(now or utc_now(), self._timezone)
        await self.publish_display_text(text)
        return text

    async def display_weather_summary(self) -> WeatherRecord | None:
        """Show the latest stored weather. Returns None when nothing is stored."""
        record = await self._gateway.latest_weather()
        if record is None:
            return None
        await self.publish_display_text(format_weather_summary(record))
        return record
