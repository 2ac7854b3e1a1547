"""Periodic flush loop for deferred-write backends.

The file backend only marks its document dirty on each change.
:class:`FlushScheduler` owns one ``asyncio`` task that wakes every
``FLUSH_INTERVAL`` seconds (default 30) and, if the provider reports
unwritten changes, awaits :meth:`~playershop.storage.base.StorageProvider.flush`.

A failing flush is logged and the loop keeps going; the provider restores
its dirty flag, so the next tick retries.  :meth:`FlushScheduler.stop`
cancels the task **and awaits it**, so no flush is still running once it
returns.

Typical usage::

    scheduler = FlushScheduler(storage, interval=settings.flush_interval)
    scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import NoReturn

from playershop.core import events
from playershop.core.exceptions import StorageError
from playershop.storage.base import StorageProvider

__all__ = ["FlushScheduler"]

logger = logging.getLogger(__name__)


class FlushScheduler:
    """Drive :meth:`StorageProvider.flush` on a fixed interval.

    Args:
        storage: Provider to flush.
        interval: Seconds between dirty-flag checks.
    """

    def __init__(self, storage: StorageProvider, *, interval: float = 30.0) -> None:
        if interval <= 0:
            raise ValueError(f"flush interval must be positive, got {interval!r}")
        self._storage = storage
        self._interval = interval
        self._task: asyncio.Task[NoReturn] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Create the background task.  Calling it twice is a no-op."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="playershop-flush-loop")
        logger.info("Flush loop started for %s (every %.0f s)", self._storage.name, self._interval)

    async def stop(self) -> None:
        """Cancel the loop and wait until it has exited."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Flush loop stopped")

    async def tick(self) -> bool:
        """Run one check; return ``True`` if a flush was attempted."""
        if not self._storage.is_dirty:
            return False
        try:
            await self._storage.flush()
        except StorageError as exc:
            logger.warning(
                "Periodic flush failed, will retry next tick: %s",
                exc,
                extra={"event": events.FLUSH_ERROR},
            )
        return True

    async def _loop(self) -> NoReturn:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Unhandled exception in flush loop; will retry after interval.")
