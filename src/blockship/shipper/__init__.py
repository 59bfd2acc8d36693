"""Sequential block shipping pipeline.

Public API
----------
.. autoclass:: S3BlockProducer
.. autoclass:: BacklogReconciler
.. autoclass:: DirectoryWatcher
.. autoclass:: SequentialUploader
.. autoclass:: PendingQueue
.. autoclass:: StallMonitor
"""

from blockship.shipper.producer import S3BlockProducer
from blockship.shipper.queue import PendingQueue
from blockship.shipper.reconciler import BacklogReconciler, scan_block_files
from blockship.shipper.stall import StallMonitor
from blockship.shipper.uploader import SequentialUploader
from blockship.shipper.watcher import BlockFileHandler, DirectoryWatcher

__all__ = [
    "BacklogReconciler",
    "BlockFileHandler",
    "DirectoryWatcher",
    "PendingQueue",
    "S3BlockProducer",
    "SequentialUploader",
    "StallMonitor",
    "scan_block_files",
]
