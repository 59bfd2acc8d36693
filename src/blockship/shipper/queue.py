"""Pending-upload queue.

Holds the absolute paths of block files known locally but not yet
confirmed in the bucket, kept sorted by block number with no duplicates.
The queue is not thread-safe: every mutation happens on the event loop
thread (see :class:`blockship.shipper.producer.S3BlockProducer`).
"""

from __future__ import annotations

import bisect
import os

from blockship.constants import BLOCK_NUMBER_WIDTH
from blockship.naming import parse_block_number


class PendingQueue:
    """Sorted, deduplicated list of pending block paths."""

    def __init__(self, block_number_width: int = BLOCK_NUMBER_WIDTH) -> None:
        self._width = block_number_width
        self._paths: list[str] = []
        self._numbers: list[int] = []
        self._members: set[str] = set()

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, path: object) -> bool:
        return path in self._members

    def __bool__(self) -> bool:
        return bool(self._paths)

    def block_number(self, path: str) -> int:
        return parse_block_number(path, self._width)

    def add(self, path: str) -> bool:
        """Insert *path* in block order.

        Returns:
            False if the path was already queued, True otherwise.

        Raises:
            ValueError: If the basename is not a block name.
        """
        path = os.path.abspath(path)
        if path in self._members:
            return False
        number = self.block_number(path)
        index = bisect.bisect_right(self._numbers, number)
        self._numbers.insert(index, number)
        self._paths.insert(index, path)
        self._members.add(path)
        return True

    def extend(self, paths: list[str]) -> int:
        """Add several paths; returns how many were new."""
        return sum(1 for path in paths if self.add(path))

    def head(self) -> tuple[str, int] | None:
        """Lowest-numbered entry as ``(path, block_number)``, or None."""
        if not self._paths:
            return None
        return self._paths[0], self._numbers[0]

    def pop_head(self) -> str:
        path = self._paths.pop(0)
        self._numbers.pop(0)
        self._members.discard(path)
        return path

    def snapshot(self) -> list[str]:
        """Copy of the queued paths in upload order."""
        return list(self._paths)
