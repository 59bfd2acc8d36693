"""Lifecycle controller for shipping block files to S3.

Composes the backlog reconciler, directory watcher and sequential uploader
into one component with an ``init()`` / ``stop()`` lifecycle:

* Inert when no bucket is configured (every operation is a no-op)
* Fails fast if the bucket is unreachable or cannot be listed
* Seeds the queue and cursor from the bucket and the directory
* Watches for new block files, then uploads them strictly in order

The pending queue and cursor are touched only on the event loop thread.
The watchdog observer thread schedules work onto the loop with
``call_soon_threadsafe`` instead of mutating shared state itself.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from blockship.constants import NO_BLOCK
from blockship.models import ShipperConfig
from blockship.naming import is_block_name, is_temp_file
from blockship.shipper.queue import PendingQueue
from blockship.shipper.reconciler import BacklogReconciler, scan_block_files
from blockship.shipper.stall import StallMonitor
from blockship.shipper.uploader import SequentialUploader
from blockship.shipper.watcher import DirectoryWatcher
from blockship.store.client import S3BlockStore

logger = logging.getLogger(__name__)


class S3BlockProducer:
    """Replicates a directory of numbered block files to an S3 bucket.

    Usage::

        producer = S3BlockProducer(config)
        await producer.init()
        ...
        producer.stop()
        await producer.wait_stopped()

    Or as an async context manager::

        async with S3BlockProducer(config) as producer:
            ...

    Args:
        config: Shipper configuration. ``bucket_name=""`` disables shipping.
        store: Optional pre-built store; built from *config* when omitted.
    """

    def __init__(
        self,
        config: ShipperConfig,
        store: S3BlockStore | None = None,
    ) -> None:
        self.config = config
        self._store = store
        self._queue = PendingQueue(config.block_number_width)
        self._stall_monitor = StallMonitor(config.stall_threshold)
        self._uploader: SequentialUploader | None = None
        self._watcher: DirectoryWatcher | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._shutdown_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self.active = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pending_queue(self) -> list[str]:
        """Paths awaiting upload, lowest block first."""
        return self._queue.snapshot()

    @property
    def current_block(self) -> int:
        """Highest block confirmed in the bucket, ``NO_BLOCK`` if none."""
        if self._uploader is None:
            return NO_BLOCK
        return self._uploader.current_block

    @property
    def stall_count(self) -> int:
        return self._stall_monitor.count

    @property
    def summary(self) -> dict[str, Any]:
        if self._uploader is None:
            return {"active": self.active, "current_block": NO_BLOCK, "pending": 0}
        return {"active": self.active, **self._uploader.summary}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Validate the bucket, reconcile the backlog and start shipping.

        Returns once the watcher is attached and the uploader task is
        scheduled; uploading continues in the background.

        Raises:
            BucketUnavailableError: If the bucket is missing or inaccessible.
            ListingError: If the bucket listing fails.
        """
        if not self.config.enabled:
            logger.info("No destination bucket configured, block shipping disabled")
            return

        if self._store is None:
            self._store = S3BlockStore.from_config(self.config)

        # Step 1: Validate bucket access
        await self._store.check_bucket()

        # Step 2: Reconcile remote top block with local files. Files that
        # appear while the bucket is listed are left to the catch-up scan
        # so observers hear about them.
        existing = set(await self._scan())
        backlog = await BacklogReconciler(self._store, self.config).reconcile()
        self._queue.extend([path for path in backlog.pending if path in existing])
        self._uploader = SequentialUploader(
            self._store,
            self._queue,
            self._stall_monitor,
            self.config,
            cursor=backlog.cursor,
        )

        # Step 3: Watch for new files (only after the initial scan)
        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._watcher = DirectoryWatcher(
            self.config.source_directory,
            self._on_watch_event,
            recursive=self.config.recursive,
        )
        self._watcher.start()
        self.active = True

        # Step 4: Pick up files finalized between the scan and the subscription
        await self._catch_up()

        # Step 5: Start the uploader in the background
        self._task = asyncio.create_task(
            self._uploader.run(self._shutdown_event), name="blockship-uploader"
        )
        logger.info(
            "Shipping %s to s3://%s (%d pending)",
            self.config.source_directory,
            self.config.bucket_name,
            len(self._queue),
        )

    def stop(self) -> None:
        """Stop watching and let the uploader exit after its current tick."""
        if not self.active:
            return
        self.active = False
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        if self._watcher is not None:
            self._watcher.stop()
        logger.info("Block shipping stopping at block %s", self._format_cursor())

    async def wait_stopped(self) -> None:
        """Wait for the uploader task and the observer thread after :meth:`stop`."""
        if self._task is not None:
            await self._task
        if self._watcher is not None:
            await asyncio.to_thread(self._watcher.join)

    async def __aenter__(self) -> S3BlockProducer:
        await self.init()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.stop()
        await self.wait_stopped()

    # ------------------------------------------------------------------
    # New file handling
    # ------------------------------------------------------------------

    def _on_watch_event(self, path: str) -> None:
        """Called on the watchdog thread; defers to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._accept, path)

    def _accept(self, path: str) -> bool:
        """Queue a newly observed file and notify observers.

        Runs on the event loop thread.

        Returns:
            True if the file was queued.
        """
        if not self.active:
            return False

        path = os.path.abspath(path)
        name = os.path.basename(path)

        if is_temp_file(path, self.config.temp_file_marker):
            logger.debug("Ignoring temp file %s", path)
            return False
        if not is_block_name(name, self.config.block_number_width):
            logger.debug("Ignoring non-block file %s", path)
            return False
        if path in self._queue:
            return False
        number = int(name)
        if number <= self.current_block:
            logger.debug("Ignoring block %d, already uploaded", number)
            return False

        self._queue.add(path)
        logger.debug("Queued block %d (%d pending)", number, len(self._queue))

        for observer in self.config.file_observers:
            try:
                observer(path)
            except Exception:
                logger.exception("File observer %r failed for %s", observer, path)
        return True

    async def _scan(self) -> list[str]:
        return await asyncio.to_thread(
            scan_block_files,
            self.config.source_directory,
            self.config.temp_file_marker,
            self.config.block_number_width,
            self.config.recursive,
        )

    async def _catch_up(self) -> None:
        paths = await self._scan()
        added = sum(1 for path in paths if self._accept(path))
        if added:
            logger.info("Catch-up scan queued %d block files", added)

    def _format_cursor(self) -> str:
        block = self.current_block
        return "none" if block == NO_BLOCK else str(block)
