"""Sequential uploader task.

Drains the pending queue strictly in block order. Each tick looks at the
lowest pending block and uploads it only if it is exactly the block after
the cursor. A missing block therefore holds back every later block: the
remote store never shows a gap or an out-of-order object, at the price of
latency while a block is missing.

Only one uploader runs per shipper, so uploads are never concurrent.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from blockship.constants import NO_BLOCK
from blockship.models import ShipperConfig
from blockship.shipper.queue import PendingQueue
from blockship.shipper.stall import StallMonitor
from blockship.store.client import S3BlockStore, TransientStoreError

logger = logging.getLogger(__name__)


class SequentialUploader:
    """Periodic in-order uploader that owns the upload cursor.

    Usage::

        uploader = SequentialUploader(store, queue, StallMonitor(), config, cursor)
        await uploader.run(shutdown_event)

    Args:
        store: Destination object store.
        queue: Shared pending queue (mutated only on the event loop thread).
        stall_monitor: Stall counter for diagnostics.
        config: Shipper configuration (interval, retry attempts).
        cursor: Highest block already persisted, or ``NO_BLOCK``.
    """

    def __init__(
        self,
        store: S3BlockStore,
        queue: PendingQueue,
        stall_monitor: StallMonitor,
        config: ShipperConfig,
        cursor: int = NO_BLOCK,
    ) -> None:
        self._store = store
        self._queue = queue
        self._stall_monitor = stall_monitor
        self._config = config
        self._current_block = cursor

        # Tracking
        self._uploaded = 0
        self._failed_attempts = 0

    @property
    def current_block(self) -> int:
        """Highest block confirmed in the store (``NO_BLOCK`` if none)."""
        return self._current_block

    @property
    def summary(self) -> dict[str, int]:
        return {
            "current_block": self._current_block,
            "uploaded": self._uploaded,
            "failed_attempts": self._failed_attempts,
            "pending": len(self._queue),
            "stalled_ticks": self._stall_monitor.count,
        }

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Tick until *shutdown_event* is set.

        An upload in flight when shutdown is requested finishes normally;
        only the next tick is suppressed.
        """
        logger.info(
            "Uploader started at block %s, ticking every %dms",
            self._format_block(self._current_block),
            self._config.poll_interval_ms,
        )
        while not shutdown_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error in upload tick")

            try:
                await asyncio.wait_for(
                    shutdown_event.wait(), timeout=self._config.poll_interval
                )
            except asyncio.TimeoutError:
                pass

        logger.info(
            "Uploader stopped: %d uploaded, cursor at block %s, %d pending",
            self._uploaded,
            self._format_block(self._current_block),
            len(self._queue),
        )

    async def tick(self) -> bool:
        """Run one upload step.

        Returns:
            True if a block was uploaded.
        """
        head = self._queue.head()
        if head is None:
            return False

        path, number = head

        # Duplicate of an already uploaded block (e.g. same number in two
        # subdirectories); it can never be uploaded, so drop it.
        if number <= self._current_block:
            logger.warning("Dropping %s: block %d already uploaded", path, number)
            self._queue.pop_head()
            return False

        expected = self._current_block + 1
        if number != expected:
            self._stall_monitor.record_stall(expected, number)
            return False

        try:
            await self.upload_block(path)
        except FileNotFoundError:
            # Deleted locally: stays at the head and counts as a stall.
            logger.debug("Block file %s is missing, waiting for it", path)
            self._stall_monitor.record_stall(number, number)
            return False
        except (TransientStoreError, OSError) as exc:
            self._failed_attempts += 1
            logger.error("Upload of block %d failed, will retry: %s", number, exc)
            return False

        # The queue may have changed while the upload was awaited; only
        # the entry that was uploaded is removed.
        current = self._queue.head()
        if current is not None and current[0] == path:
            self._queue.pop_head()
        self._current_block = number
        self._uploaded += 1
        self._stall_monitor.record_progress()
        logger.info("Uploaded block %d (%d pending)", number, len(self._queue))
        return True

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_block(self, path: str) -> None:
        """Read *path* and put it under its block name.

        Retries transient store failures up to ``upload_attempts`` times
        within the tick.

        Raises:
            TransientStoreError: If every attempt failed.
            OSError: If the file cannot be read.
        """
        body = await asyncio.to_thread(Path(path).read_bytes)
        block_name = os.path.basename(path)

        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=0.1, max=self._config.poll_interval),
            stop=stop_after_attempt(self._config.upload_attempts),
            retry=retry_if_exception_type(TransientStoreError),
            reraise=True,
        ):
            with attempt:
                await self._store.put_block(block_name, body)

    @staticmethod
    def _format_block(number: int) -> str:
        return "none" if number == NO_BLOCK else str(number)
