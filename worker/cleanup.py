"""
Purge of soft-deleted videos whose restore window has passed.

Runs nightly inside the API process (CleanupScheduler) or on demand with
`vixora cleanup`.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from api.asset_store import AssetStore
from api.common import utcnow
from api.metrics import VIDEOS_PURGED_TOTAL
from api.publishing import destroy_remote_assets
from api.video_store import VideoStore
from config import CLEANUP_BATCH_LIMIT, CLEANUP_HOUR_UTC, SOFT_DELETE_GRACE_DAYS

logger = logging.getLogger(__name__)


async def purge_expired_videos(
    store: VideoStore,
    assets: AssetStore,
    batch_limit: int = CLEANUP_BATCH_LIMIT,
    grace_days: int = SOFT_DELETE_GRACE_DAYS,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Permanently delete one batch of expired soft-deleted videos.

    Remote asset deletion failures are logged and do not stop the row from
    being deleted. A failure on one video never stops the sweep.

    Returns:
        Counts: {"found", "purged", "failed", "asset_failures"}
    """
    cutoff = (now or utcnow()) - timedelta(days=grace_days)
    expired = await store.list_expired_deleted(cutoff, batch_limit)
    stats = {"found": len(expired), "purged": 0, "failed": 0, "asset_failures": 0}

    for video in expired:
        try:
            stats["asset_failures"] += await destroy_remote_assets(assets, video)
            await store.delete_video(video["id"])
            stats["purged"] += 1
            VIDEOS_PURGED_TOTAL.inc()
        except Exception as e:
            stats["failed"] += 1
            logger.error(f"Failed to purge video {video['id']}: {e}")

    if expired:
        logger.info(
            f"Purge sweep: {stats['purged']}/{stats['found']} videos removed, "
            f"{stats['asset_failures']} asset deletions failed"
        )
    return stats


def seconds_until_next_run(now: datetime, hour_utc: int = CLEANUP_HOUR_UTC) -> float:
    """Seconds from now until the next hour_utc:00:00 UTC."""
    now = now.astimezone(timezone.utc)
    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class CleanupScheduler:
    """Runs purge_expired_videos once a day at a fixed UTC hour."""

    def __init__(
        self,
        store: VideoStore,
        assets: AssetStore,
        hour_utc: int = CLEANUP_HOUR_UTC,
        batch_limit: int = CLEANUP_BATCH_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.assets = assets
        self.hour_utc = hour_utc
        self.batch_limit = batch_limit
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Nightly cleanup scheduled at {self.hour_utc:02d}:00 UTC")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(seconds_until_next_run(self._clock(), self.hour_utc))
            try:
                await purge_expired_videos(self.store, self.assets, batch_limit=self.batch_limit)
            except Exception:
                logger.exception("Nightly cleanup failed")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
