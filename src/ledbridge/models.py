"""Shared data models for the LED feed bridge.

Exchange rates are Decimal end to end; they are stored as TEXT in SQLite
and only turned into floats at the JSON boundary. Weather readings are
plain floats.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Direction(str, Enum):
    """Traffic log direction."""

    PUBLISH = "publish"
    SUBSCRIBE = "subscribe"


class ConnectionPhase(str, Enum):
    """Broker connection lifecycle phase."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class DisplayMode(str, Enum):
    """How the device renders custom text."""

    SCROLL_LEFT = "scroll_left"
    SCROLL_RIGHT = "scroll_right"
    BLINK = "blink"


@dataclass(frozen=True)
class Location:
    """A latitude/longitude pair."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class WeatherRecord:
    """Canonical current-conditions observation for one location."""

    latitude: float
    longitude: float
    temperature: float
    humidity: float
    pressure: float
    wind_speed: float
    description: str
    observed_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["observed_at"] = self.observed_at.isoformat()
        return data


@dataclass(frozen=True)
class ExchangeRecord:
    """Canonical exchange rate for one currency pair.

    The rate must be strictly positive; construction fails otherwise.
    """

    base_currency: str
    target_currency: str
    rate: Decimal
    observed_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.rate.is_finite() or self.rate <= 0:
            raise ValueError(
                f"rate for {self.base_currency}/{self.target_currency} must be positive, got {self.rate}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_currency": self.base_currency,
            "target_currency": self.target_currency,
            "rate": float(self.rate),
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class RateTable:
    """Normalized exchange-rate response: base code and code -> raw rate."""

    base: str
    rates: dict[str, Any]


@dataclass(frozen=True)
class TrafficLogEntry:
    """One message sent or received over the bus."""

    topic: str
    payload: str
    direction: Direction
    at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class DisplayMessage:
    """Free-form text sent to the display."""

    text: str
    mode: DisplayMode | None = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class LedSettings:
    """Display settings pushed to the device. Unset fields are omitted."""

    mode: DisplayMode | None = None
    speed: int | None = None  # 1-10
    brightness: int | None = None  # 1-15

    def __post_init__(self) -> None:
        if self.speed is not None and not 1 <= self.speed <= 10:
            raise ValueError(f"speed must be between 1 and 10, got {self.speed}")
        if self.brightness is not None and not 1 <= self.brightness <= 15:
            raise ValueError(f"brightness must be between 1 and 15, got {self.brightness}")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.mode is not None:
            data["mode"] = self.mode.value
        if self.speed is not None:
            data["speed"] = self.speed
        if self.brightness is not None:
            data["brightness"] = self.brightness
        return data


@dataclass(frozen=True)
class ConnectionState:
    """Read-only snapshot of the broker connection."""

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase.value, "last_error": self.last_error}


@dataclass(frozen=True)
class PublishAck:
    """Returned when a publish has been accepted for transport handoff."""

    topic: str
    qos: int
    retain: bool
    accepted_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "qos": self.qos,
            "retain": self.retain,
            "accepted_at": self.accepted_at.isoformat(),
        }


@dataclass(frozen=True)
class PairQuote:
    """Latest rate for an arbitrary pair, possibly derived through USD."""

    record: ExchangeRecord
    converted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {**self.record.to_dict(), "converted": self.converted}
