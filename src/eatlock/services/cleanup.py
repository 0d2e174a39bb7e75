"""Periodic removal of abandoned photo uploads."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from eatlock.services.images import ImageService

_logger = logging.getLogger(__name__)

STALE_UPLOAD_TTL_SECONDS = 30 * 60


@dataclass
class StaleUploadSweeper:
    """Deletes uploads nobody consumed once they outlive the TTL.

    Verify-food keeps its photo for the later comparison, so photos from
    abandoned sessions are only ever removed here.
    """

    images: ImageService
    ttl_seconds: float = STALE_UPLOAD_TTL_SECONDS
    interval_seconds: float = 15 * 60
    _task: asyncio.Task[None] | None = None

    async def run_once(self) -> int:
        """Run one sweep and return the number of deleted uploads."""
        deleted = await self.images.purge_stale_uploads(self.ttl_seconds)
        _logger.info("Deleted %s stale uploads", deleted)
        return deleted

    def start(self) -> None:
        """Start sweeping in the background."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._loop())
        _logger.info("Stale upload sweeper started")

    async def stop(self) -> None:
        """Cancel the background sweep."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        _logger.info("Stale upload sweeper stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                _logger.exception("Stale upload sweep failed")
            await asyncio.sleep(self.interval_seconds)
