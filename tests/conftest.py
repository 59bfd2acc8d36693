"""Shared pytest fixtures for block shipper tests.

Provides a temporary block directory, block file factories, an in-memory
stand-in for the boto3 S3 client, and a fast-ticking shipper config.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest
from botocore.exceptions import ClientError

from blockship.models import ShipperConfig
from blockship.naming import encode_block_number
from blockship.store.client import S3BlockStore

TEST_BUCKET = "test-bucket"


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _ListObjectsPaginator:
    def __init__(self, client: InMemoryS3Client) -> None:
        self._client = client

    def paginate(self, Bucket: str, Prefix: str = "", **kwargs):
        client = self._client
        client.list_calls += 1
        if client.on_list is not None:
            client.on_list()
        if client.listing_error is not None:
            raise client.listing_error
        if Bucket != client.bucket:
            raise _client_error("NoSuchBucket", "ListObjectsV2")

        keys = sorted(k for k in client.objects if k.startswith(Prefix))
        if not keys:
            yield {"KeyCount": 0}
            return
        for i in range(0, len(keys), client.page_size):
            chunk = keys[i : i + client.page_size]
            yield {"Contents": [{"Key": k} for k in chunk], "KeyCount": len(chunk)}


class InMemoryS3Client:
    """The subset of the boto3 S3 client used by S3BlockStore."""

    def __init__(self, bucket: str = TEST_BUCKET, page_size: int = 2) -> None:
        self.bucket = bucket
        self.page_size = page_size
        self.objects: dict[str, bytes] = {}
        self.put_keys: list[str] = []
        self.put_failures = 0
        self.list_calls = 0
        self.listing_error: Exception | None = None
        self.on_list: Callable[[], None] | None = None

    def head_bucket(self, Bucket: str) -> dict:
        if Bucket != self.bucket:
            raise _client_error("404", "HeadBucket")
        return {}

    def get_paginator(self, name: str) -> _ListObjectsPaginator:
        assert name == "list_objects_v2"
        return _ListObjectsPaginator(self)

    def put_object(self, Bucket: str, Key: str, Body: bytes, **kwargs) -> dict:
        if self.put_failures > 0:
            self.put_failures -= 1
            raise _client_error("InternalError", "PutObject")
        self.objects[Key] = Body
        self.put_keys.append(Key)
        return {}


@pytest.fixture
def block_dir(tmp_path: Path) -> Path:
    """Empty directory that plays the producer's transaction log directory."""
    directory = tmp_path / "tx-log"
    directory.mkdir()
    return directory


@pytest.fixture
def make_block(block_dir: Path) -> Callable[[int], str]:
    """Write block *n* directly under its final name; returns its absolute path."""

    def _make(number: int, content: bytes | None = None) -> str:
        path = block_dir / encode_block_number(number)
        path.write_bytes(content if content is not None else f"block-{number}".encode())
        return os.path.abspath(path)

    return _make


@pytest.fixture
def finalize_block(block_dir: Path) -> Callable[[int], str]:
    """Write block *n* the way producers do: temp file, then rename into place."""

    def _finalize(number: int) -> str:
        tmp = block_dir / "tmp-tx-log.bin"
        tmp.write_bytes(f"block-{number}".encode())
        final = block_dir / encode_block_number(number)
        os.replace(tmp, final)
        return os.path.abspath(final)

    return _finalize


@pytest.fixture
def s3_client() -> InMemoryS3Client:
    return InMemoryS3Client()


@pytest.fixture
def store(s3_client: InMemoryS3Client) -> S3BlockStore:
    return S3BlockStore(TEST_BUCKET, s3_client)


@pytest.fixture
def make_config(block_dir: Path) -> Callable[..., ShipperConfig]:
    """ShipperConfig pointing at block_dir with a fast tick."""

    def _make(**overrides) -> ShipperConfig:
        kwargs = {
            "bucket_name": TEST_BUCKET,
            "source_directory": block_dir,
            "poll_interval_ms": 20,
            "stall_threshold": 3,
            "upload_attempts": 1,
        }
        kwargs.update(overrides)
        return ShipperConfig(**kwargs)

    return _make
