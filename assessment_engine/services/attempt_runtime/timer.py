"""Countdown bound to one attempt.

``remaining_seconds`` is a pure function of the attempt's start, its duration
and the current time; ``ExpiryTimer`` ticks it cooperatively and schedules the
forced submission exactly once.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from assessment_engine.core.config import settings
from assessment_engine.core.logging_config import get_logger
from assessment_engine.utils.datetime_utils import ensure_aware, get_current_utc_datetime

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def deadline_for(started_at: datetime, duration_minutes: Optional[int]) -> Optional[datetime]:
    if duration_minutes is None:
        return None
    return ensure_aware(started_at) + timedelta(minutes=duration_minutes)


def remaining_seconds(
    started_at: datetime, duration_minutes: Optional[int], now: datetime
) -> Optional[float]:
    """Seconds left before expiry, floored at 0. None for untimed tests."""
    if duration_minutes is None:
        return None
    elapsed = (ensure_aware(now) - ensure_aware(started_at)).total_seconds()
    return max(0.0, duration_minutes * 60 - elapsed)


class ExpiryTimer:
    """Periodic countdown that fires ``on_expire`` once when time runs out.

    Firing only schedules ``on_expire`` as its own task, so a tick never
    blocks and cancelling the timer never interrupts a submission already
    under way.
    """

    def __init__(
        self,
        started_at: datetime,
        duration_minutes: Optional[int],
        on_expire: Callable[[], Awaitable[None]],
        *,
        tick_seconds: Optional[float] = None,
        clock: Clock = get_current_utc_datetime,
    ):
        self.started_at = started_at
        self.duration_minutes = duration_minutes
        self.tick_seconds = tick_seconds or settings.TIMER_TICK_SECONDS
        self._on_expire = on_expire
        self._clock = clock
        self._fired = False
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None
        self.expiry_task: Optional[asyncio.Task] = None

    @property
    def is_inert(self) -> bool:
        return self.duration_minutes is None

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def remaining(self) -> Optional[float]:
        return remaining_seconds(self.started_at, self.duration_minutes, self._clock())

    def start(self) -> None:
        if self.is_inert or self._cancelled or self.running:
            return
        self._task = asyncio.create_task(self._run(), name="attempt-expiry-timer")

    def tick(self) -> Optional[float]:
        """Check the countdown once; fire when it reached zero."""
        if self.is_inert or self._cancelled:
            return None
        remaining = self.remaining()
        if remaining <= 0:
            self._fire()
        return remaining

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        try:
            while not self._cancelled and not self._fired:
                remaining = self.tick()
                if self._fired or remaining is None:
                    return
                await asyncio.sleep(min(self.tick_seconds, remaining))
        except asyncio.CancelledError:
            logger.debug("Expiry timer cancelled")
            raise

    def _fire(self) -> None:
        # Ticks racing the boundary all land here; only the first one schedules
        if self._fired:
            return
        self._fired = True
        logger.info("Attempt time expired; scheduling forced submission")
        self.expiry_task = asyncio.create_task(self._on_expire(), name="attempt-forced-submit")
