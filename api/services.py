"""
Service container.

One AppServices instance per process owns the database connection, the Redis
pool, the job queue and everything built on them. The API builds it in its
lifespan, the worker and CLI commands build their own.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from databases import Database

from api.asset_store import AssetStore
from api.database import configure_database
from api.detail_cache import DetailCacheType, create_detail_cache
from api.job_queue import JobQueueType, create_job_queue
from api.queue_events import QueueEventListener, QueueEventsType, create_queue_events
from api.redis_client import RedisClient
from api.video_store import VideoStore
from config import (
    ASSET_STORE_TIMEOUT,
    CACHE_DEFAULT_TTL,
    CACHE_ENABLED,
    CACHE_L1_ENABLED,
    CACHE_L1_MAX_ENTRIES,
    CACHE_NAMESPACE,
    CACHE_STORAGE_URL,
    CLOUDINARY_API_BASE,
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
    CLOUDINARY_CLOUD_NAME,
    DATABASE_URL,
    QUEUE_ENABLED,
    QUEUE_NAME,
    QUEUE_URL,
    REDIS_URL,
)

logger = logging.getLogger(__name__)


def _is_redis_url(url: str) -> bool:
    return url.startswith(("redis://", "rediss://"))


@dataclass
class AppServices:
    database: Database
    store: VideoStore
    cache: DetailCacheType
    assets: AssetStore
    redis: Optional[RedisClient] = None
    queue: Optional[JobQueueType] = None
    events: Optional[QueueEventsType] = None
    listener: Optional[QueueEventListener] = None
    supervisor: Optional[object] = None  # worker.supervisor.WorkerSupervisor
    scheduler: Optional[object] = None  # worker.cleanup.CleanupScheduler

    @classmethod
    async def create(
        cls,
        database_url: str = DATABASE_URL,
        redis_url: str = REDIS_URL,
        queue_url: str = QUEUE_URL,
        queue_enabled: bool = QUEUE_ENABLED,
        cache_url: str = CACHE_STORAGE_URL,
        assets: Optional[AssetStore] = None,
    ) -> "AppServices":
        """Connect everything. Redis being down is not fatal; the database being down is."""
        database = Database(database_url)
        await database.connect()
        await configure_database(database)

        if not redis_url and _is_redis_url(queue_url):
            redis_url = queue_url
        redis = await RedisClient.connect(redis_url) if redis_url else None

        queue = create_job_queue(queue_url, enabled=queue_enabled, redis=redis, name=QUEUE_NAME)
        events = None
        if queue is not None:
            events = create_queue_events(queue.backend, queue.name, redis)
            queue.attach_events(events)

        cache = create_detail_cache(
            storage_url=cache_url,
            redis=redis if redis is not None and redis.is_available else None,
            namespace=CACHE_NAMESPACE,
            default_ttl=CACHE_DEFAULT_TTL,
            enabled=CACHE_ENABLED,
            l1_enabled=CACHE_L1_ENABLED,
            max_entries=CACHE_L1_MAX_ENTRIES,
        )

        if assets is None:
            assets = AssetStore(
                CLOUDINARY_CLOUD_NAME,
                CLOUDINARY_API_KEY,
                CLOUDINARY_API_SECRET,
                api_base=CLOUDINARY_API_BASE,
                timeout=ASSET_STORE_TIMEOUT,
            )
            if not assets.is_configured:
                logger.warning("Cloudinary credentials not configured, publishing will fail")

        return cls(
            database=database,
            store=VideoStore(database),
            cache=cache,
            assets=assets,
            redis=redis,
            queue=queue,
            events=events,
        )

    async def start_event_listener(self) -> None:
        """Log events from a shared Redis queue (other processes' workers included)."""
        if self.queue is None or self.queue.backend != "redis" or self.redis is None:
            return
        self.listener = QueueEventListener(self.redis, self.queue.name)
        await self.listener.start()

    async def close(self) -> None:
        if self.supervisor is not None:
            await self.supervisor.stop()
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.listener is not None:
            await self.listener.stop()
        if self.queue is not None:
            await self.queue.close()
        if self.events is not None:
            await self.events.close()
        await self.assets.close()
        if self.redis is not None:
            await self.redis.close()
        await self.database.disconnect()
