"""Backlog reconciliation between the bucket and the local block directory.

Determines the highest block already persisted remotely, then scans the
local directory for block files above it. The result seeds the pending
queue and the upload cursor when the shipper starts.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from blockship.constants import NO_BLOCK
from blockship.models import Backlog, ShipperConfig
from blockship.naming import is_block_name, is_temp_file
from blockship.store.client import S3BlockStore

logger = logging.getLogger(__name__)


def scan_block_files(
    directory: Path,
    temp_file_marker: str,
    block_number_width: int,
    recursive: bool = False,
) -> list[str]:
    """List block files under *directory* as absolute path strings.

    Skips directories, temp files and names that are not fixed-width block
    numbers. Results are sorted by block name.
    """
    found: list[str] = []
    root = os.path.abspath(directory)

    for dirpath, dirnames, filenames in os.walk(root):
        if not recursive:
            dirnames.clear()
        for filename in filenames:
            full_path = os.path.join(dirpath, filename)
            if is_temp_file(full_path, temp_file_marker):
                continue
            if not is_block_name(filename, block_number_width):
                logger.debug("Ignoring non-block file %s", full_path)
                continue
            found.append(full_path)

    found.sort(key=os.path.basename)
    return found


class BacklogReconciler:
    """Computes the initial cursor and pending set for the shipper.

    Usage::

        reconciler = BacklogReconciler(store, config)
        backlog = await reconciler.reconcile()
        print(backlog.summary)
    """

    def __init__(self, store: S3BlockStore, config: ShipperConfig) -> None:
        self.store = store
        self.config = config

    async def reconcile(self) -> Backlog:
        """Derive the cursor from the bucket and list the local backlog.

        The listing runs to completion before the directory is scanned, so
        any file finalized while the listing is in flight is still picked up.

        Raises:
            ListingError: If the bucket listing fails. An unknown cursor
                would risk duplicate or gapped uploads.
        """
        # Step 1: Highest persisted block
        top_key = await self.store.top_block_key()
        cursor = int(top_key) if top_key is not None else NO_BLOCK

        # Step 2: Local block files
        directory = self.config.source_directory
        if not directory.exists():
            logger.warning("Block directory %s does not exist, creating it", directory)
            directory.mkdir(parents=True, exist_ok=True)

        local = await asyncio.to_thread(
            scan_block_files,
            directory,
            self.config.temp_file_marker,
            self.config.block_number_width,
            self.config.recursive,
        )

        # Step 3: Keep only blocks above the remote top
        if top_key is not None:
            pending = [p for p in local if os.path.basename(p) > top_key]
        else:
            pending = local

        backlog = Backlog(cursor=cursor, pending=pending)
        logger.info(
            "Reconciled %s: %d local block files, %s",
            directory,
            len(local),
            backlog.summary,
        )
        return backlog
