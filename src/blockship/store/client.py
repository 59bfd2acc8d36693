"""S3 object store client for block uploads.

Wraps a single boto3 S3 client and exposes the three operations the
shipper needs:

  1. ``check_bucket()`` -- ``head_bucket`` existence/access check
  2. ``top_block_key()`` -- paginated ``list_objects_v2`` scan for the
     highest block key already persisted
  3. ``put_block()`` -- ``put_object`` of one block's bytes

boto3 is synchronous, so every call runs in ``asyncio.to_thread()``.
botocore errors are translated into the exceptions below at this boundary.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from blockship.constants import BLOCK_NUMBER_WIDTH
from blockship.models import ShipperConfig
from blockship.naming import is_block_name

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for object store failures."""


class BucketUnavailableError(StoreError):
    """Raised when the bucket does not exist or cannot be accessed."""


class ListingError(StoreError):
    """Raised when the bucket listing fails part-way or entirely."""


class TransientStoreError(StoreError):
    """Raised when a single object upload fails; the upload may be retried."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class S3BlockStore:
    """Block-oriented wrapper around a boto3 S3 client.

    Usage::

        store = S3BlockStore.from_config(config)
        await store.check_bucket()
        top = await store.top_block_key()
        await store.put_block("00000000000000000007", b"...")

    Args:
        bucket_name: Destination bucket.
        client: A boto3 S3 client. Tests pass a mock here.
        key_prefix: Optional key prefix (e.g. ``"tx-log/"``) prepended to
            every block key.
        block_number_width: Digits in a block name; keys of any other shape
            are ignored when scanning the listing.
    """

    def __init__(
        self,
        bucket_name: str,
        client: Any,
        key_prefix: str = "",
        block_number_width: int = BLOCK_NUMBER_WIDTH,
    ) -> None:
        self.bucket_name = bucket_name
        self.key_prefix = key_prefix
        self.block_number_width = block_number_width
        self._client = client

    @classmethod
    def from_config(cls, config: ShipperConfig) -> S3BlockStore:
        """Build a store with a fresh boto3 client for *config*.

        Credentials come from :func:`blockship.config.get_aws_credentials`;
        when none are configured boto3's default chain is used.
        """
        from blockship.config import get_aws_credentials

        access_key, secret_key = get_aws_credentials()
        session = boto3.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=config.region,
        )
        client = session.client("s3", endpoint_url=config.endpoint_url)
        return cls(
            config.bucket_name,
            client,
            key_prefix=config.key_prefix,
            block_number_width=config.block_number_width,
        )

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def object_key(self, block_name: str) -> str:
        """Full object key for a block name."""
        return f"{self.key_prefix}{block_name}"

    def block_name_from_key(self, key: str) -> str | None:
        """Strip the prefix from *key*; None if it is not a block object."""
        if not key.startswith(self.key_prefix):
            return None
        name = key[len(self.key_prefix):]
        if not is_block_name(name, self.block_number_width):
            return None
        return name

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def check_bucket(self) -> None:
        """Verify the bucket exists and is reachable.

        Raises:
            BucketUnavailableError: On 403/404 or any transport failure.
        """
        try:
            await asyncio.to_thread(self._client.head_bucket, Bucket=self.bucket_name)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "unknown")
            raise BucketUnavailableError(
                f"S3 bucket {self.bucket_name} non-existent or inaccessible "
                f"(error code {code})."
            ) from exc
        except BotoCoreError as exc:
            raise BucketUnavailableError(
                f"S3 bucket {self.bucket_name} non-existent or inaccessible: {exc}"
            ) from exc
        logger.debug("Bucket %s is reachable", self.bucket_name)

    async def top_block_key(self) -> str | None:
        """Return the highest block name stored in the bucket, or None if empty.

        Pages through ``list_objects_v2`` until exhaustion. Block names are
        fixed-width, so the string maximum is the numeric maximum.

        Raises:
            ListingError: If any page fails.
        """

        def _scan() -> tuple[str | None, int]:
            paginator = self._client.get_paginator("list_objects_v2")
            params = {"Bucket": self.bucket_name}
            if self.key_prefix:
                params["Prefix"] = self.key_prefix
            top: str | None = None
            seen = 0
            for page in paginator.paginate(**params):
                for obj in page.get("Contents", []):
                    name = self.block_name_from_key(obj["Key"])
                    if name is None:
                        continue
                    seen += 1
                    if top is None or name > top:
                        top = name
            return top, seen

        try:
            top, seen = await asyncio.to_thread(_scan)
        except (ClientError, BotoCoreError) as exc:
            raise ListingError(
                f"Failed to list bucket {self.bucket_name}: {exc}"
            ) from exc

        logger.info(
            "Bucket %s holds %d block objects, top block %s",
            self.bucket_name,
            seen,
            top if top is not None else "none",
        )
        return top

    async def put_block(self, block_name: str, body: bytes) -> None:
        """Upload one block. Overwriting an existing key is harmless.

        Raises:
            TransientStoreError: On any store or transport failure.
        """
        key = self.object_key(block_name)
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=body,
                ContentType="application/octet-stream",
            )
        except (ClientError, BotoCoreError) as exc:
            raise TransientStoreError(f"Upload of {key} failed: {exc}") from exc
