"""Object store access for block uploads."""

from blockship.store.client import (
    BucketUnavailableError,
    ListingError,
    S3BlockStore,
    StoreError,
    TransientStoreError,
)

__all__ = [
    "BucketUnavailableError",
    "ListingError",
    "S3BlockStore",
    "StoreError",
    "TransientStoreError",
]
