"""Ingestion schedulers for the weather and exchange-rate feeds."""

from ledbridge.ingestion.exchange import ExchangeScheduler
from ledbridge.ingestion.rotation import RotationCursor
from ledbridge.ingestion.scheduler import IngestionScheduler, SchedulerPhase
from ledbridge.ingestion.weather import WeatherScheduler

__all__ = [
    "ExchangeScheduler",
    "IngestionScheduler",
    "RotationCursor",
    "SchedulerPhase",
    "WeatherScheduler",
]
