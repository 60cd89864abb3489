"""Periodic, fire-and-forget upload of an attempt's in-progress answers."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Set

from assessment_engine.core.config import settings
from assessment_engine.core.exceptions import PersistenceUnavailable, StaleTransition
from assessment_engine.core.logging_config import get_logger

logger = get_logger(__name__)


class Autosaver:
    """Runs ``prepare_upload`` every interval and ships the result in its own task.

    ``prepare_upload`` snapshots the answer set synchronously (assigning the
    revision at tick time) and returns the upload awaitable, or None when
    there is nothing to save. Uploads never block the caller and their
    failures only reach the log; the next tick retries with a fresh snapshot.
    """

    def __init__(
        self,
        prepare_upload: Callable[[], Optional[Awaitable]],
        *,
        interval_seconds: Optional[float] = None,
    ):
        self.interval_seconds = interval_seconds or settings.AUTOSAVE_INTERVAL_SECONDS
        self._prepare_upload = prepare_upload
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> None:
        self._stopped = False
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run(), name="attempt-autosave")

    def tick(self) -> Optional[asyncio.Task]:
        """Take a snapshot now and upload it in the background."""
        if self._stopped:
            return None
        upload = self._prepare_upload()
        if upload is None:
            return None
        task = asyncio.create_task(self._upload(upload), name="attempt-autosave-upload")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    def stop(self) -> None:
        """Stop scheduling new uploads. Uploads already in flight keep going."""
        self._stopped = True
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()

    async def drain(self) -> None:
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _run(self) -> None:
        try:
            while not self._stopped:
                await asyncio.sleep(self.interval_seconds)
                self.tick()
        except asyncio.CancelledError:
            logger.debug("Autosave loop cancelled")
            raise

    async def _upload(self, upload: Awaitable) -> None:
        try:
            await upload
        except StaleTransition:
            # The attempt left draft while this upload was in flight
            logger.debug("Autosave dropped: submission is no longer a draft")
        except PersistenceUnavailable as e:
            logger.warning(f"Autosave failed, will retry on next tick: {e}")
        except Exception as e:
            logger.exception(f"Unexpected autosave failure: {e}")
