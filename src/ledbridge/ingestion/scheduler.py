"""Recurring ingestion job shared by the weather and exchange feeds.

Each scheduler runs one cycle implementation two ways: from its own timer
(start/stop) and on demand (run_once). A cycle walks the phases
Idle -> Fetching -> Normalizing -> Persisting -> Publishing and returns to
Idle on completion or on the first failure; there is no retry inside a
cycle.

Timer-triggered failures are logged and the next tick still fires.
On-demand callers get the exception. Overlapping cycles of the same
scheduler are allowed; they do not share mutable state beyond the
counters reported by get_status().
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ledbridge.exceptions import BridgeError, NotConnectedError
from ledbridge.logging import cycle_context, get_logger
from ledbridge.models import utc_now

if TYPE_CHECKING:
    from ledbridge.broker.connection import BrokerConnection

logger = get_logger(__name__)

T = TypeVar("T")

# Display and raw topics are fire-and-forget; qos 1 hands them off at least once
PUBLISH_QOS = 1

# Upper bound on how long stop() waits for a timer cycle already in flight
STOP_TIMEOUT = 30.0


class SchedulerPhase(str, Enum):
    """Step of the ingestion cycle currently executing."""

    IDLE = "idle"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    PUBLISHING = "publishing"


class IngestionScheduler(ABC, Generic[T]):
    """Timer plus on-demand trigger around a single fetch→publish cycle.

    Args:
        broker: Shared broker connection used for the publishing phase.
        interval: Seconds between timer-triggered cycles.
    """

    domain: str = "ingestion"

    def __init__(self, broker: BrokerConnection, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._broker = broker
        self._interval = interval
        self._phase = SchedulerPhase.IDLE
        self._running = False
        self._sleeping = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._cycles_succeeded = 0
        self._cycles_failed = 0
        self._last_success_at: datetime | None = None
        self._last_error: str | None = None

    @property
    def phase(self) -> SchedulerPhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def interval(self) -> float:
        return self._interval

    async def start(self, interval: float | None = None) -> None:
        """Begin timer-triggered cycles in the background.

        The first cycle runs immediately, then one every interval seconds.
        """
        if self._running:
            logger.warning("scheduler_already_running", domain=self.domain)
            return
        if interval is not None:
            if interval <= 0:
                raise ValueError(f"interval must be positive, got {interval}")
            self._interval = interval
        self._running = True
        self._task = asyncio.create_task(self._timer_loop(), name=f"{self.domain}-scheduler")
        logger.info("scheduler_started", domain=self.domain, interval=self._interval)

    async def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """Stop the timer.

        A timer waiting for its next tick is cancelled at once. A cycle in
        flight is allowed to finish and is only cancelled if it is still
        running after timeout seconds.
        """
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return

        if self._sleeping:
            task.cancel()
        else:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                logger.warning(
                    "scheduler_stop_timeout",
                    domain=self.domain,
                    phase=self._phase.value,
                    timeout=timeout,
                )
                task.cancel()

        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("scheduler_stopped", domain=self.domain)

    async def run_once(self, trigger: str = "on_demand") -> T:
        """Run one complete cycle and return its result.

        Raises:
            BridgeError: FetchError, SchemaError or StorageError from the
                failing step. The scheduler itself is unaffected.
        """
        with cycle_context(self.domain, trigger):
            try:
                result = await self._cycle()
            except Exception as exc:
                self._cycles_failed += 1
                self._last_error = str(exc) or type(exc).__name__
                logger.warning(
                    "ingestion_cycle_failed",
                    phase=self._phase.value,
                    error_type=type(exc).__name__,
                    error=self._last_error,
                    exc_info=not isinstance(exc, BridgeError),
                )
                raise
            finally:
                self._phase = SchedulerPhase.IDLE

            self._cycles_succeeded += 1
            self._last_success_at = utc_now()
            return result

    def get_status(self) -> dict[str, Any]:
        """Return scheduler status for the health endpoint."""
        return {
            "domain": self.domain,
            "running": self._running,
            "phase": self._phase.value,
            "interval": self._interval,
            "cycles_succeeded": self._cycles_succeeded,
            "cycles_failed": self._cycles_failed,
            "last_success_at": (
                self._last_success_at.isoformat() if self._last_success_at else None
            ),
            "last_error": self._last_error,
        }

    async def _timer_loop(self) -> None:
        while self._running:
            try:
                await self.run_once(trigger="timer")
            except asyncio.CancelledError:
                raise
            except Exception:
                # Already logged by run_once; the next tick fires regardless
                pass
            if not self._running:
                break
            self._sleeping = True
            try:
                await asyncio.sleep(self._interval)
            finally:
                self._sleeping = False

    def _enter(self, phase: SchedulerPhase) -> None:
        self._phase = phase
        logger.debug("ingestion_phase", phase=phase.value)

    async def _publish(self, topic: str, payload: str) -> bool:
        """Publish one cycle message; False when the broker link is down.

        A down link does not fail the cycle: the data is already persisted
        and the next tick republishes fresh values.
        """
        try:
            await self._broker.publish(topic, payload, qos=PUBLISH_QOS)
        except NotConnectedError:
            logger.warning("cycle_publish_skipped", topic=topic)
            return False
        return True

    @abstractmethod
    async def _cycle(self) -> T:
        """Execute fetch→normalize→persist→publish and return the result."""
        ...
