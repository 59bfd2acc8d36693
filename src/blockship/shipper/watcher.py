"""Directory watcher for newly finalized block files.

watchdog delivers events on its own observer thread. The watcher does no
filtering or queue work there: it hands each candidate path to a callback
that the producer binds to ``loop.call_soon_threadsafe``, so all queue
mutation stays on the event loop thread.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from watchdog.events import (
    DirCreatedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


def _event_path(raw: str | bytes) -> str:
    """watchdog may report bytes paths; normalise to str."""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="surrogateescape")
    return raw


class BlockFileHandler(FileSystemEventHandler):
    """Forwards file creations and renames to *on_path*.

    Renames matter because producers write under a temporary name and
    rename the file into place once complete; the destination path is
    the finished block.
    """

    def __init__(self, on_path: Callable[[str], None]) -> None:
        super().__init__()
        self._on_path = on_path

    def on_created(self, event: FileCreatedEvent | DirCreatedEvent) -> None:
        if event.is_directory:
            return
        self._forward(_event_path(event.src_path))

    def on_moved(self, event: FileMovedEvent | DirMovedEvent) -> None:
        if event.is_directory:
            return
        self._forward(_event_path(event.dest_path))

    def _forward(self, path: str) -> None:
        try:
            self._on_path(path)
        except Exception as e:
            # An exception here would kill the observer thread.
            logger.warning("Failed to forward event for %s: %s", path, e)


class DirectoryWatcher:
    """Owns the watchdog subscription on the block directory.

    Usage::

        watcher = DirectoryWatcher(Path("data/tx-log"), on_path)
        watcher.start()
        ...
        watcher.stop()
        watcher.join()
    """

    def __init__(
        self,
        directory: Path,
        on_path: Callable[[str], None],
        recursive: bool = False,
    ) -> None:
        self.directory = directory
        self.recursive = recursive
        self._handler = BlockFileHandler(on_path)
        self._observer: Observer | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> None:
        """Attach the observer to the directory."""
        observer = Observer()
        observer.schedule(self._handler, str(self.directory), recursive=self.recursive)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for new block files", self.directory)

    def stop(self) -> None:
        """Release the filesystem subscription without waiting for the thread."""
        if self._observer is None:
            return
        self._observer.stop()
        logger.info("Stopped watching %s", self.directory)

    def join(self, timeout: float = 5.0) -> None:
        """Block until the observer thread has exited after :meth:`stop`."""
        observer = self._observer
        if observer is None:
            return
        observer.join(timeout=timeout)
        self._observer = None
