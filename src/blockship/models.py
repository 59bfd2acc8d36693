"""Data models for the block shipper."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from blockship.constants import (
    BLOCK_NUMBER_WIDTH,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_STALL_THRESHOLD,
    DEFAULT_UPLOAD_ATTEMPTS,
    NO_BLOCK,
    TEMP_FILE_MARKER,
)

FileObserver = Callable[[str], None]


@dataclass
class ShipperConfig:
    """Configuration for the S3 block shipper.

    An empty ``bucket_name`` leaves the shipper inert: the host process runs
    the same way whether or not remote archiving is enabled.
    """

    bucket_name: str = ""
    source_directory: Path = field(default_factory=lambda: Path("data/tx-log"))
    file_observers: list[FileObserver] = field(default_factory=list)
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    stall_threshold: int = DEFAULT_STALL_THRESHOLD
    temp_file_marker: str = TEMP_FILE_MARKER
    block_number_width: int = BLOCK_NUMBER_WIDTH
    recursive: bool = False
    key_prefix: str = ""
    upload_attempts: int = DEFAULT_UPLOAD_ATTEMPTS
    region: str | None = None
    endpoint_url: str | None = None

    def __post_init__(self) -> None:
        """Coerce paths and reject nonsensical timings."""
        if isinstance(self.source_directory, str):
            self.source_directory = Path(self.source_directory)
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.stall_threshold <= 0:
            raise ValueError(f"stall_threshold must be positive, got {self.stall_threshold}")
        if self.upload_attempts <= 0:
            raise ValueError(f"upload_attempts must be positive, got {self.upload_attempts}")

    @property
    def enabled(self) -> bool:
        return bool(self.bucket_name)

    @property
    def poll_interval(self) -> float:
        """Tick interval in seconds."""
        return self.poll_interval_ms / 1000


@dataclass
class Backlog:
    """Result of reconciling the bucket against the local directory."""

    cursor: int = NO_BLOCK
    pending: list[str] = field(default_factory=list)

    def _walk(self) -> tuple[int, int | None]:
        """Count contiguous blocks after the cursor; also return the first gap."""
        expected = self.cursor + 1
        count = 0
        for path in self.pending:
            number = int(Path(path).name)
            if number < expected:
                # Same block number in another subdirectory
                continue
            if number != expected:
                return count, expected
            count += 1
            expected += 1
        return count, None

    @property
    def ready_count(self) -> int:
        """Pending blocks that follow the cursor with no gap."""
        return self._walk()[0]

    @property
    def first_missing(self) -> int | None:
        """The block the uploader will stall on, or None if there is no gap."""
        return self._walk()[1]

    @property
    def summary(self) -> str:
        top = "none" if self.cursor == NO_BLOCK else str(self.cursor)
        return f"remote_top={top}, pending={len(self.pending)}"
