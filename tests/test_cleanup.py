"""Tests for the purge of expired soft-deleted videos."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from conftest import insert_video

from worker.cleanup import CleanupScheduler, purge_expired_videos, seconds_until_next_run

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestPurgeExpiredVideos:
    @pytest.mark.asyncio
    async def test_purges_only_expired(self, store, assets, cloudinary, test_database, owner):
        expired = await insert_video(test_database, is_deleted=True, deleted_at=NOW - timedelta(days=8))
        recent = await insert_video(test_database, is_deleted=True, deleted_at=NOW - timedelta(days=2))
        live = await insert_video(test_database)

        stats = await purge_expired_videos(store, assets, now=NOW)

        assert stats == {"found": 1, "purged": 1, "failed": 0, "asset_failures": 0}
        assert await store.get_video(expired) is None
        assert await store.get_video(recent) is not None
        assert await store.get_video(live) is not None
        assert ("video", "videos/user-1/clip") in cloudinary.destroyed
        assert ("image", "thumbnails/user-1/cover") in cloudinary.destroyed

    @pytest.mark.asyncio
    async def test_asset_failures_do_not_block_purge(self, store, assets, cloudinary, test_database, owner):
        video_id = await insert_video(test_database, is_deleted=True, deleted_at=NOW - timedelta(days=30))
        cloudinary.destroy_results["videos/user-1/clip"] = "error"

        stats = await purge_expired_videos(store, assets, now=NOW)

        assert stats["purged"] == 1
        assert stats["asset_failures"] == 1
        assert await store.get_video(video_id) is None

    @pytest.mark.asyncio
    async def test_batch_limit(self, store, assets, test_database, owner):
        for days in (8, 9, 10):
            await insert_video(test_database, is_deleted=True, deleted_at=NOW - timedelta(days=days))

        stats = await purge_expired_videos(store, assets, batch_limit=2, now=NOW)

        assert stats["found"] == 2
        assert len(await store.list_expired_deleted(NOW, limit=10)) == 1

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_sweep(self, store, assets, test_database, owner):
        first = await insert_video(test_database, is_deleted=True, deleted_at=NOW - timedelta(days=10))
        second = await insert_video(test_database, is_deleted=True, deleted_at=NOW - timedelta(days=9))
        original = store.delete_video

        async def flaky_delete(video_id):
            if video_id == first:
                raise RuntimeError("database is locked")
            return await original(video_id)

        store.delete_video = flaky_delete

        stats = await purge_expired_videos(store, assets, now=NOW)

        assert stats["purged"] == 1
        assert stats["failed"] == 1
        assert await store.get_video(second) is None

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, store, assets):
        assert await purge_expired_videos(store, assets, now=NOW) == {
            "found": 0,
            "purged": 0,
            "failed": 0,
            "asset_failures": 0,
        }


class TestSecondsUntilNextRun:
    def test_later_today(self):
        now = datetime(2024, 6, 1, 1, 30, tzinfo=timezone.utc)
        assert seconds_until_next_run(now, hour_utc=3) == 90 * 60

    def test_tomorrow(self):
        now = datetime(2024, 6, 1, 3, 0, tzinfo=timezone.utc)
        assert seconds_until_next_run(now, hour_utc=3) == 24 * 3600

    def test_other_timezone_input(self):
        now = datetime(2024, 6, 1, 5, 0, tzinfo=timezone(timedelta(hours=2)))  # 03:00 UTC
        assert seconds_until_next_run(now, hour_utc=4) == 3600


class TestCleanupScheduler:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, store, assets):
        scheduler = CleanupScheduler(store, assets, clock=lambda: NOW)

        scheduler.start()
        assert scheduler.is_running

        await scheduler.stop()
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_runs_sweep_when_due(self, store, assets):
        scheduler = CleanupScheduler(store, assets, batch_limit=5, clock=lambda: NOW)
        purge = AsyncMock(return_value={})

        with patch("worker.cleanup.seconds_until_next_run", return_value=0), patch(
            "worker.cleanup.purge_expired_videos", purge
        ):
            scheduler.start()
            for _ in range(100):
                if purge.await_count:
                    break
                await asyncio.sleep(0.01)
            await scheduler.stop()

        assert purge.await_args.kwargs == {"batch_limit": 5}

    @pytest.mark.asyncio
    async def test_sweep_errors_keep_scheduler_alive(self, store, assets):
        scheduler = CleanupScheduler(store, assets, clock=lambda: NOW)
        purge = AsyncMock(side_effect=RuntimeError("boom"))

        with patch("worker.cleanup.seconds_until_next_run", return_value=0), patch(
            "worker.cleanup.purge_expired_videos", purge
        ):
            scheduler.start()
            for _ in range(100):
                if purge.await_count >= 2:
                    break
                await asyncio.sleep(0.01)
            assert scheduler.is_running
            await scheduler.stop()

        assert purge.await_count >= 2

    @pytest.mark.parametrize("hour", [0, 23])
    def test_hour_bounds(self, hour):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        assert 0 < seconds_until_next_run(now, hour_utc=hour) <= 24 * 3600
