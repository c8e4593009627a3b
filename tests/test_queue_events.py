"""Tests for queue lifecycle events."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from api.enums import QueueEventType
from api.queue_events import (
    LocalQueueEvents,
    QueueEventListener,
    RedisQueueEvents,
    build_event,
    channel_name,
    create_queue_events,
)


class TestBuildEvent:
    def test_channel_name(self):
        assert channel_name("video-processing", "vixora") == "vixora:queue:video-processing:events"

    def test_event_without_reason(self):
        message = build_event(QueueEventType.COMPLETED, "video-1")
        assert message["event"] == "completed"
        assert message["jobId"] == "video-1"
        assert "failedReason" not in message
        assert "timestamp" in message

    def test_event_with_reason(self):
        message = build_event(QueueEventType.FAILED, "video-1", failed_reason="boom")
        assert message["failedReason"] == "boom"


class TestLocalQueueEvents:
    @pytest.mark.asyncio
    async def test_callbacks_receive_events(self):
        events = LocalQueueEvents()
        received = []
        events.subscribe(received.append)

        await events.emit(QueueEventType.WAITING, "video-1")

        assert received[0]["event"] == "waiting"

    @pytest.mark.asyncio
    async def test_async_callback(self):
        events = LocalQueueEvents()
        callback = AsyncMock()
        events.subscribe(callback)

        await events.emit(QueueEventType.ACTIVE, "video-1")

        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_callback_is_isolated(self):
        events = LocalQueueEvents()
        received = []
        events.subscribe(MagicMock(side_effect=RuntimeError("bad subscriber")))
        events.subscribe(received.append)

        await events.emit(QueueEventType.FAILED, "video-1", failed_reason="boom")

        assert len(received) == 1


class TestRedisQueueEvents:
    @pytest.fixture
    def redis(self):
        client = MagicMock()
        client.publish = AsyncMock(return_value=1)
        redis = MagicMock()
        redis.get_client.return_value = client
        return redis

    @pytest.mark.asyncio
    async def test_publish(self, redis):
        events = RedisQueueEvents(redis, "q", key_prefix="vx")

        assert await events.emit(QueueEventType.COMPLETED, "video-1") is True

        channel, payload = redis.get_client.return_value.publish.call_args.args
        assert channel == "vx:queue:q:events"
        assert json.loads(payload)["jobId"] == "video-1"

    @pytest.mark.asyncio
    async def test_publish_error(self, redis):
        redis.get_client.return_value.publish.side_effect = ConnectionError("down")
        events = RedisQueueEvents(redis, "q")
        assert await events.emit(QueueEventType.COMPLETED, "video-1") is False

    @pytest.mark.asyncio
    async def test_unavailable(self, redis):
        redis.get_client.return_value = None
        events = RedisQueueEvents(redis, "q")
        assert await events.emit(QueueEventType.COMPLETED, "video-1") is False


class TestCreateQueueEvents:
    def test_memory_backend(self):
        assert isinstance(create_queue_events("memory", "q"), LocalQueueEvents)

    def test_redis_backend(self):
        assert isinstance(create_queue_events("redis", "q", MagicMock()), RedisQueueEvents)

    def test_redis_backend_without_client(self):
        assert isinstance(create_queue_events("redis", "q", None), LocalQueueEvents)


class TestQueueEventListener:
    @pytest.mark.asyncio
    async def test_handle_message_invokes_callback(self):
        received = []
        listener = QueueEventListener(MagicMock(), "q", callback=received.append)

        await listener.handle_message(json.dumps({"event": "completed", "jobId": "video-1"}))

        assert received == [{"event": "completed", "jobId": "video-1"}]

    @pytest.mark.asyncio
    async def test_malformed_message_is_ignored(self):
        callback = MagicMock()
        listener = QueueEventListener(MagicMock(), "q", callback=callback)

        await listener.handle_message("not json")

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_without_redis(self):
        redis = MagicMock()
        redis.get_client.return_value = None
        listener = QueueEventListener(redis, "q")

        assert await listener.start() is False
        await listener.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()

        async def listen():
            yield {"type": "subscribe", "data": 1}

        pubsub.listen = listen
        redis = MagicMock()
        redis.get_client.return_value.pubsub.return_value = pubsub
        listener = QueueEventListener(redis, "q", key_prefix="vx")

        assert await listener.start() is True
        pubsub.subscribe.assert_awaited_once_with("vx:queue:q:events")

        await listener.stop()
        pubsub.unsubscribe.assert_awaited_once()
        pubsub.aclose.assert_awaited_once()
