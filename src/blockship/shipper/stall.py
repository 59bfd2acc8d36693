"""Stall tracking for the sequential uploader.

A stall is a tick where the head of the pending queue is not the next
block after the cursor, usually because the producer has not finalized
that block yet or it was deleted. Stalls never change uploader behaviour;
the monitor only makes a stuck pipeline visible in the logs.
"""

from __future__ import annotations

import logging

from blockship.constants import DEFAULT_STALL_THRESHOLD

logger = logging.getLogger(__name__)


class StallMonitor:
    """Counts consecutive stalled ticks and reports the missing block.

    A warning is logged when the count reaches *threshold* and again at
    every further multiple of it, so a long stall is reported periodically
    rather than on every tick.
    """

    def __init__(self, threshold: int = DEFAULT_STALL_THRESHOLD) -> None:
        self._threshold = threshold
        self._count = 0
        self._reports = 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def reports(self) -> int:
        """Number of warnings emitted during the current stall."""
        return self._reports

    def record_stall(self, missing_block: int, head_block: int) -> bool:
        """Record one stalled tick.

        Returns:
            True if this tick emitted a warning.
        """
        self._count += 1
        if self._count % self._threshold != 0:
            return False

        self._reports += 1
        logger.warning(
            "Upload stalled for %d ticks: waiting for block %d "
            "(lowest pending block is %d)",
            self._count,
            missing_block,
            head_block,
        )
        return True

    def record_progress(self) -> None:
        """Reset after a successful upload."""
        if self._reports:
            logger.info("Upload resumed after %d stalled ticks", self._count)
        self._count = 0
        self._reports = 0
