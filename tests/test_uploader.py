"""Unit tests for the pending queue, stall monitor and sequential uploader.

The uploader is driven tick by tick (no background task) so ordering
and cursor behaviour can be checked deterministically.
"""

from __future__ import annotations

import asyncio
import logging
import os
from unittest.mock import AsyncMock

import pytest

from blockship.constants import NO_BLOCK
from blockship.naming import encode_block_number
from blockship.shipper.queue import PendingQueue
from blockship.shipper.stall import StallMonitor
from blockship.shipper.uploader import SequentialUploader
from blockship.store.client import TransientStoreError


def _uploader(store, config, paths=(), cursor=NO_BLOCK, threshold=None):
    queue = PendingQueue()
    queue.extend(list(paths))
    monitor = StallMonitor(threshold or config.stall_threshold)
    return SequentialUploader(store, queue, monitor, config, cursor=cursor), queue, monitor


# ======================================================================
# Pending queue
# ======================================================================


class TestPendingQueue:
    def test_sorted_by_block_number(self, tmp_path):
        queue = PendingQueue()
        for n in (5, 1, 3):
            queue.add(str(tmp_path / encode_block_number(n)))
        assert [os.path.basename(p) for p in queue.snapshot()] == [
            encode_block_number(n) for n in (1, 3, 5)
        ]
        assert queue.head() == (str(tmp_path / encode_block_number(1)), 1)

    def test_duplicates_rejected(self, tmp_path):
        queue = PendingQueue()
        path = str(tmp_path / encode_block_number(1))
        assert queue.add(path) is True
        assert queue.add(path) is False
        assert queue.extend([path, path]) == 0
        assert len(queue) == 1

    def test_relative_and_absolute_paths_are_the_same_entry(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        queue = PendingQueue()
        queue.add(encode_block_number(1))
        assert queue.add(str(tmp_path / encode_block_number(1))) is False

    def test_non_block_name_rejected(self):
        with pytest.raises(ValueError):
            PendingQueue().add("/log/readme.txt")

    def test_pop_head(self, tmp_path):
        queue = PendingQueue()
        queue.extend([str(tmp_path / encode_block_number(n)) for n in (2, 1)])
        assert queue.pop_head().endswith(encode_block_number(1))
        assert str(tmp_path / encode_block_number(1)) not in queue
        assert len(queue) == 1

    def test_empty(self):
        queue = PendingQueue()
        assert not queue
        assert queue.head() is None


# ======================================================================
# Stall monitor
# ======================================================================


class TestStallMonitor:
    def test_reports_once_per_threshold(self, caplog):
        monitor = StallMonitor(threshold=3)
        with caplog.at_level(logging.WARNING, logger="blockship.shipper.stall"):
            emitted = [monitor.record_stall(0, 1) for _ in range(7)]

        assert emitted == [False, False, True, False, False, True, False]
        assert monitor.count == 7
        assert monitor.reports == 2
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 2
        assert "waiting for block 0" in warnings[0].getMessage()

    def test_progress_resets(self):
        monitor = StallMonitor(threshold=2)
        monitor.record_stall(0, 1)
        monitor.record_stall(0, 1)
        monitor.record_progress()
        assert monitor.count == 0
        assert monitor.reports == 0


# ======================================================================
# Sequential uploader
# ======================================================================


class TestSequentialUploader:
    @pytest.mark.asyncio
    async def test_uploads_in_order(self, store, s3_client, make_block, make_config):
        paths = [make_block(n) for n in range(3)]
        uploader, queue, _ = _uploader(store, make_config(), paths)

        for expected in range(3):
            assert await uploader.tick() is True
            assert uploader.current_block == expected

        assert await uploader.tick() is False
        assert s3_client.put_keys == [encode_block_number(n) for n in range(3)]
        assert s3_client.objects[encode_block_number(1)] == b"block-1"
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_gap_blocks_upload(self, store, s3_client, make_block, make_config):
        uploader, queue, monitor = _uploader(store, make_config(), [make_block(1)])

        for _ in range(5):
            assert await uploader.tick() is False

        assert uploader.current_block == NO_BLOCK
        assert s3_client.put_keys == []
        assert len(queue) == 1
        assert monitor.count == 5

    @pytest.mark.asyncio
    async def test_gap_filled_resumes(self, store, s3_client, make_block, make_config):
        uploader, queue, monitor = _uploader(store, make_config(), [make_block(1)])
        await uploader.tick()

        queue.add(make_block(0))
        assert await uploader.tick() is True
        assert monitor.count == 0
        assert await uploader.tick() is True

        assert uploader.current_block == 1
        assert s3_client.put_keys == [encode_block_number(0), encode_block_number(1)]

    @pytest.mark.asyncio
    async def test_continues_from_remote_cursor(self, store, s3_client, make_block, make_config):
        uploader, _, _ = _uploader(store, make_config(), [make_block(5)], cursor=4)
        assert await uploader.tick() is True
        assert uploader.current_block == 5

    @pytest.mark.asyncio
    async def test_failed_upload_keeps_head(self, store, s3_client, make_block, make_config):
        paths = [make_block(0), make_block(1)]
        uploader, queue, _ = _uploader(store, make_config(), paths)
        s3_client.put_failures = 2

        assert await uploader.tick() is False
        assert await uploader.tick() is False
        assert uploader.current_block == NO_BLOCK
        assert queue.snapshot() == paths

        assert await uploader.tick() is True
        assert uploader.current_block == 0
        assert uploader.summary["failed_attempts"] == 2

    @pytest.mark.asyncio
    async def test_retries_within_tick(self, store, s3_client, make_block, make_config):
        uploader, _, _ = _uploader(
            store, make_config(upload_attempts=3, poll_interval_ms=1), [make_block(0)]
        )
        s3_client.put_failures = 2

        assert await uploader.tick() is True
        assert s3_client.put_keys == [encode_block_number(0)]

    @pytest.mark.asyncio
    async def test_vanished_file_is_retried_not_skipped(
        self, store, s3_client, make_block, make_config, caplog
    ):
        head = make_block(0)
        uploader, queue, monitor = _uploader(
            store, make_config(stall_threshold=3), [head, make_block(1)]
        )
        os.remove(head)

        with caplog.at_level(logging.DEBUG, logger="blockship"):
            for _ in range(10):
                assert await uploader.tick() is False

        assert uploader.current_block == NO_BLOCK
        assert queue.head() == (head, 0)
        assert s3_client.put_keys == []
        assert monitor.count == 10
        assert monitor.reports == 3
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 3
        assert "waiting for block 0" in warnings[0].getMessage()

    @pytest.mark.asyncio
    async def test_restored_file_uploads_after_stall(self, store, s3_client, make_block, make_config):
        head = make_block(0)
        uploader, _, monitor = _uploader(store, make_config(), [head])
        os.remove(head)
        await uploader.tick()
        assert monitor.count == 1

        make_block(0)
        assert await uploader.tick() is True
        assert monitor.count == 0
        assert s3_client.put_keys == [encode_block_number(0)]

    @pytest.mark.asyncio
    async def test_duplicate_of_uploaded_block_dropped(self, tmp_path, store, make_config):
        stale = tmp_path / "old" / encode_block_number(3)
        stale.parent.mkdir()
        stale.write_bytes(b"x")
        uploader, queue, _ = _uploader(store, make_config(), [str(stale)], cursor=3)

        assert await uploader.tick() is False
        assert len(queue) == 0
        assert uploader.current_block == 3

    @pytest.mark.asyncio
    async def test_cursor_never_regresses(self, store, make_block, make_config):
        paths = [make_block(n) for n in (0, 1, 3, 4)]
        uploader, queue, _ = _uploader(store, make_config(), paths)
        seen = [uploader.current_block]
        for _ in range(6):
            await uploader.tick()
            seen.append(uploader.current_block)
        queue.add(make_block(2))
        for _ in range(4):
            await uploader.tick()
            seen.append(uploader.current_block)

        assert all(b - a in (0, 1) for a, b in zip(seen, seen[1:]))
        assert seen[-1] == 4

    @pytest.mark.asyncio
    async def test_run_stops_on_event(self, make_block, make_config):
        store = AsyncMock()
        uploader, _, _ = _uploader(store, make_config(), [make_block(0)])
        event = asyncio.Event()

        task = asyncio.create_task(uploader.run(event))
        for _ in range(100):
            if uploader.current_block == 0:
                break
            await asyncio.sleep(0.01)
        event.set()
        await asyncio.wait_for(task, timeout=2)

        assert uploader.current_block == 0
        store.put_block.assert_awaited_once_with(encode_block_number(0), b"block-0")

    @pytest.mark.asyncio
    async def test_run_survives_unexpected_errors(self, make_block, make_config, caplog):
        store = AsyncMock()
        store.put_block.side_effect = [RuntimeError("boom"), None]
        uploader, _, _ = _uploader(store, make_config(), [make_block(0)])
        event = asyncio.Event()

        with caplog.at_level(logging.ERROR, logger="blockship.shipper.uploader"):
            task = asyncio.create_task(uploader.run(event))
            for _ in range(200):
                if uploader.current_block == 0:
                    break
                await asyncio.sleep(0.01)
            event.set()
            await asyncio.wait_for(task, timeout=2)

        assert uploader.current_block == 0
        assert any("Unexpected error" in r.getMessage() for r in caplog.records)
