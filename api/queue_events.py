"""
Queue lifecycle events.

Events: waiting, delayed, active, completed, failed, each carrying
{"jobId", "failedReason"?}. They are observational only: nothing in the
processing path depends on them being delivered, and emission errors are
logged and swallowed.

Realisations:
- LocalQueueEvents: fans out to in-process callbacks (memory:// queues)
- RedisQueueEvents: publishes JSON on "{prefix}:queue:{queue_name}:events"
  so any process can follow a shared Redis queue

QueueEventListener subscribes to the Redis channel and logs what it receives.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from api.enums import QueueEventType
from api.redis_client import RedisClient
from config import REDIS_KEY_PREFIX

logger = logging.getLogger(__name__)

QueueEventCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


def channel_name(queue_name: str, key_prefix: str = REDIS_KEY_PREFIX) -> str:
    """
    Channel a queue's events are published on.

    Returns:
        Full channel name (e.g., "vixora:queue:video-processing:events")
    """
    return f"{key_prefix}:queue:{queue_name}:events"


def build_event(event_type: QueueEventType, job_id: str, failed_reason: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "event": event_type.value,
        "jobId": job_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if failed_reason is not None:
        message["failedReason"] = failed_reason
    return message


def log_event(message: Dict[str, Any]) -> None:
    """Log one queue event at a level matching its severity."""
    event = message.get("event")
    job_id = message.get("jobId")
    if event == QueueEventType.FAILED.value:
        logger.warning(f"Job {job_id} failed: {message.get('failedReason')}")
    elif event == QueueEventType.COMPLETED.value:
        logger.info(f"Job {job_id} completed")
    else:
        logger.debug(f"Job {job_id} {event}")


class LocalQueueEvents:
    """In-process event fan-out."""

    def __init__(self) -> None:
        self._callbacks: List[QueueEventCallback] = [log_event]

    def subscribe(self, callback: QueueEventCallback) -> None:
        self._callbacks.append(callback)

    async def emit(self, event_type: QueueEventType, job_id: str, failed_reason: Optional[str] = None) -> None:
        message = build_event(event_type, job_id, failed_reason)
        for callback in list(self._callbacks):
            try:
                result = callback(message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning(f"Queue event callback failed for {job_id}: {e}")

    async def close(self) -> None:
        self._callbacks = [log_event]


class RedisQueueEvents:
    """Publish queue events to a Redis Pub/Sub channel."""

    def __init__(self, redis: RedisClient, queue_name: str, key_prefix: str = REDIS_KEY_PREFIX) -> None:
        self._redis = redis
        self.channel = channel_name(queue_name, key_prefix)

    async def emit(self, event_type: QueueEventType, job_id: str, failed_reason: Optional[str] = None) -> bool:
        """
        Publish one event.

        Returns:
            True if published successfully
        """
        client = self._redis.get_client()
        if client is None:
            return False

        try:
            await client.publish(self.channel, json.dumps(build_event(event_type, job_id, failed_reason)))
            return True
        except Exception as e:
            logger.warning(f"Failed to publish queue event: {e}")
            return False

    async def close(self) -> None:
        pass


# Type alias for either event publisher
QueueEventsType = Union[LocalQueueEvents, RedisQueueEvents]


def create_queue_events(backend: str, queue_name: str, redis: Optional[RedisClient] = None) -> QueueEventsType:
    """Event publisher matching the queue backend ("memory" or "redis")."""
    if backend == "redis" and redis is not None:
        return RedisQueueEvents(redis, queue_name)
    return LocalQueueEvents()


class QueueEventListener:
    """Subscribe to a Redis queue's event channel and log every event."""

    def __init__(
        self,
        redis: RedisClient,
        queue_name: str,
        callback: Optional[QueueEventCallback] = None,
        key_prefix: str = REDIS_KEY_PREFIX,
    ) -> None:
        self._redis = redis
        self.channel = channel_name(queue_name, key_prefix)
        self._callback = callback or log_event
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> bool:
        """
        Subscribe and start the background listen loop.

        Returns:
            True if subscribed successfully
        """
        client = self._redis.get_client()
        if client is None:
            return False

        try:
            self._pubsub = client.pubsub()
            await self._pubsub.subscribe(self.channel)
        except Exception as e:
            logger.warning(f"Failed to subscribe to {self.channel}: {e}")
            self._pubsub = None
            return False

        self._task = asyncio.create_task(self._listen())
        logger.info(f"Listening for queue events on {self.channel}")
        return True

    async def _listen(self) -> None:
        try:
            async for raw in self._pubsub.listen():
                if raw.get("type") != "message":
                    continue
                await self.handle_message(raw.get("data"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Queue event listener stopped: {e}")

    async def handle_message(self, data: Any) -> None:
        try:
            message = json.loads(data)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring malformed queue event: {data!r}")
            return
        try:
            result = self._callback(message)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning(f"Queue event callback failed: {e}")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except Exception as e:
                logger.debug(f"Error closing queue event subscription: {e}")
            self._pubsub = None
