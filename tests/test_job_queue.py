"""Tests for the video processing job queue.

Tests cover:
- Deduplication by deterministic job id
- Priority ordering (high > normal > low) and FIFO within a priority
- Retry with exponential backoff and the attempt cap
- Lease expiry recovery and stale results from a previous holder
- Bounded retention of finished jobs
- Redis backend calls against a mocked client
- Factory selection
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from api.enums import JobState
from api.job_queue import (
    CLAIM_SCRIPT,
    FINISH_SCRIPT,
    RETRY_SCRIPT,
    InMemoryJobQueue,
    Job,
    JobOptions,
    QueueUnavailableError,
    RedisJobQueue,
    compute_backoff_ms,
    create_job_queue,
    job_id_for,
)
from api.queue_events import LocalQueueEvents


class TestHelpers:
    def test_job_id_for(self):
        assert job_id_for("abc123") == "video-abc123"

    @pytest.mark.parametrize("attempts,expected", [(1, 5000), (2, 10000), (3, 20000), (4, 40000)])
    def test_backoff_doubles(self, attempts, expected):
        assert compute_backoff_ms(5000, attempts) == expected

    def test_job_hash_round_trip(self):
        job = Job(job_id="video-1", data={"videoId": "1"}, priority="high", attempts_made=2, created_at_ms=1000)
        restored = Job.from_hash(job.to_hash())
        assert restored.job_id == "video-1"
        assert restored.video_id == "1"
        assert restored.priority == "high"
        assert restored.attempts_made == 2
        assert restored.processed_at_ms is None
        assert restored.lease_token is None


class TestInMemoryEnqueue:
    @pytest.fixture
    def queue(self, clock):
        return InMemoryJobQueue(name="test", lease_ms=60_000, clock=clock)

    @pytest.mark.asyncio
    async def test_enqueue_creates_waiting_job(self, queue, clock):
        job = await queue.enqueue("video-1", {"videoId": "1"})

        assert job.state == JobState.WAITING.value
        assert job.video_id == "1"
        assert job.created_at_ms == int(clock.now * 1000)
        assert (await queue.get_counts())["waiting"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_enqueue_returns_existing(self, queue):
        first = await queue.enqueue("video-1", {"videoId": "1"})
        second = await queue.enqueue("video-1", {"videoId": "1"}, JobOptions(priority="high"))

        assert second is first
        assert second.priority == "normal"
        assert (await queue.get_counts())["waiting"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_while_active_is_ignored(self, queue):
        await queue.enqueue("video-1", {"videoId": "1"})
        claimed = await queue.claim("w1")

        again = await queue.enqueue("video-1", {"videoId": "1"})

        assert again is claimed
        assert (await queue.get_counts())["active"] == 1
        assert await queue.claim("w2") is None

    @pytest.mark.asyncio
    async def test_unknown_priority_becomes_normal(self, queue):
        job = await queue.enqueue("video-1", {"videoId": "1"}, JobOptions(priority="urgent"))
        assert job.priority == "normal"


class TestInMemoryClaim:
    @pytest.fixture
    def queue(self, clock):
        return InMemoryJobQueue(name="test", lease_ms=60_000, clock=clock)

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        assert await queue.claim("w1") is None

    @pytest.mark.asyncio
    async def test_priority_order(self, queue, clock):
        await queue.enqueue("video-low", {"videoId": "low"}, JobOptions(priority="low"))
        clock.advance(1)
        await queue.enqueue("video-normal", {"videoId": "normal"})
        clock.advance(1)
        await queue.enqueue("video-high", {"videoId": "high"}, JobOptions(priority="high"))

        order = [(await queue.claim("w1")).job_id for _ in range(3)]

        assert order == ["video-high", "video-normal", "video-low"]

    @pytest.mark.asyncio
    async def test_fifo_within_priority(self, queue):
        for n in range(3):
            await queue.enqueue(f"video-{n}", {"videoId": str(n)})

        order = [(await queue.claim("w1")).job_id for _ in range(3)]

        assert order == ["video-0", "video-1", "video-2"]

    @pytest.mark.asyncio
    async def test_claim_sets_lease(self, queue, clock):
        await queue.enqueue("video-1", {"videoId": "1"})
        job = await queue.claim("w1")

        assert job.state == JobState.ACTIVE.value
        assert job.lease_token.startswith("w1:")
        assert job.lease_until_ms == int(clock.now * 1000) + 60_000
        assert job.processed_at_ms == int(clock.now * 1000)

    @pytest.mark.asyncio
    async def test_expired_lease_is_recovered(self, queue, clock):
        await queue.enqueue("video-1", {"videoId": "1"})
        stale = await queue.claim("w1")
        stale_token = stale.lease_token

        clock.advance(59)
        assert await queue.claim("w2") is None

        clock.advance(1)
        recovered = await queue.claim("w2")
        assert recovered.job_id == "video-1"
        assert recovered.lease_token.startswith("w2:")

        # The first holder's late result is ignored
        late = Job(job_id="video-1", lease_token=stale_token)
        assert await queue.complete(late) is False
        assert (await queue.get_job("video-1")).state == JobState.ACTIVE.value


class TestInMemoryRetries:
    @pytest.fixture
    def queue(self, clock):
        return InMemoryJobQueue(name="test", lease_ms=60_000, clock=clock)

    @pytest.mark.asyncio
    async def test_failed_attempt_is_delayed_with_backoff(self, queue, clock):
        await queue.enqueue("video-1", {"videoId": "1"}, JobOptions(attempts=3, backoff_delay_ms=1000))
        job = await queue.claim("w1")

        state = await queue.fail(job, "boom")

        assert state == JobState.DELAYED.value
        stored = await queue.get_job("video-1")
        assert stored.attempts_made == 1
        assert stored.failed_reason == "boom"
        assert stored.ready_at_ms == int(clock.now * 1000) + 1000
        assert (await queue.get_counts())["delayed"] == 1

    @pytest.mark.asyncio
    async def test_delayed_job_not_claimable_until_ready(self, queue, clock):
        await queue.enqueue("video-1", {"videoId": "1"}, JobOptions(attempts=3, backoff_delay_ms=1000))
        await queue.fail(await queue.claim("w1"), "boom")

        clock.advance(0.5)
        assert await queue.claim("w1") is None

        clock.advance(0.5)
        counts = await queue.get_counts()
        assert counts["waiting"] == 1
        assert counts["delayed"] == 0
        assert (await queue.claim("w1")).job_id == "video-1"

    @pytest.mark.asyncio
    async def test_backoff_grows_and_attempts_cap(self, queue, clock):
        await queue.enqueue("video-1", {"videoId": "1"}, JobOptions(attempts=3, backoff_delay_ms=1000))

        assert await queue.fail(await queue.claim("w1"), "e1") == "delayed"
        clock.advance(1)
        assert await queue.fail(await queue.claim("w1"), "e2") == "delayed"
        assert (await queue.get_job("video-1")).ready_at_ms == int(clock.now * 1000) + 2000
        clock.advance(2)
        assert await queue.fail(await queue.claim("w1"), "e3") == "failed"

        stored = await queue.get_job("video-1")
        assert stored.state == JobState.FAILED.value
        assert stored.attempts_made == 3
        assert stored.finished_at_ms == int(clock.now * 1000)
        clock.advance(3600)
        assert await queue.claim("w1") is None

    @pytest.mark.asyncio
    async def test_single_attempt_fails_immediately(self, queue):
        await queue.enqueue("video-1", {"videoId": "1"}, JobOptions(attempts=1))
        assert await queue.fail(await queue.claim("w1"), "boom") == "failed"


class TestInMemoryRetention:
    @pytest.mark.asyncio
    async def test_completed_jobs_are_trimmed(self, clock):
        queue = InMemoryJobQueue(clock=clock)
        options = JobOptions(remove_on_complete=1)
        for n in range(2):
            await queue.enqueue(f"video-{n}", {"videoId": str(n)}, options)
            assert await queue.complete(await queue.claim("w1")) is True

        assert await queue.get_job("video-0") is None
        assert (await queue.get_job("video-1")).state == JobState.COMPLETED.value
        assert (await queue.get_counts())["completed"] == 1

    @pytest.mark.asyncio
    async def test_evicted_job_can_be_enqueued_again(self, clock):
        queue = InMemoryJobQueue(clock=clock)
        await queue.enqueue("video-1", {"videoId": "1"}, JobOptions(remove_on_complete=0))
        await queue.complete(await queue.claim("w1"))

        job = await queue.enqueue("video-1", {"videoId": "1"})

        assert job.state == JobState.WAITING.value

    @pytest.mark.asyncio
    async def test_retained_completed_job_blocks_duplicate(self, clock):
        queue = InMemoryJobQueue(clock=clock)
        await queue.enqueue("video-1", {"videoId": "1"})
        await queue.complete(await queue.claim("w1"))

        job = await queue.enqueue("video-1", {"videoId": "1"})

        assert job.state == JobState.COMPLETED.value
        assert await queue.claim("w1") is None


class TestInMemoryRemoval:
    @pytest.mark.asyncio
    async def test_remove_waiting_job(self, clock):
        queue = InMemoryJobQueue(clock=clock)
        job = await queue.enqueue("video-1", {"videoId": "1"})

        assert await queue.remove_job(job) is True
        assert await queue.get_job("video-1") is None
        assert await queue.claim("w1") is None

    @pytest.mark.asyncio
    async def test_remove_active_job_discards_result(self, clock):
        queue = InMemoryJobQueue(clock=clock)
        await queue.enqueue("video-1", {"videoId": "1"})
        job = await queue.claim("w1")

        assert await queue.remove_job(job) is True
        assert await queue.complete(job) is False
        assert await queue.fail(job, "boom") is None

    @pytest.mark.asyncio
    async def test_remove_missing_job(self, clock):
        queue = InMemoryJobQueue(clock=clock)
        assert await queue.remove_job(Job(job_id="video-x")) is False


class TestInMemoryEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events(self, clock):
        queue = InMemoryJobQueue(clock=clock)
        events = LocalQueueEvents()
        received = []
        events.subscribe(received.append)
        queue.attach_events(events)

        await queue.enqueue("video-1", {"videoId": "1"}, JobOptions(attempts=2, backoff_delay_ms=10))
        await queue.fail(await queue.claim("w1"), "boom")
        clock.advance(1)
        await queue.complete(await queue.claim("w1"))

        assert [m["event"] for m in received] == ["waiting", "active", "failed", "delayed", "active", "completed"]
        assert received[2]["failedReason"] == "boom"
        assert all(m["jobId"] == "video-1" for m in received)

    @pytest.mark.asyncio
    async def test_event_errors_do_not_break_queue(self, clock):
        queue = InMemoryJobQueue(clock=clock)
        events = MagicMock()
        events.emit = AsyncMock(side_effect=RuntimeError("publisher down"))
        queue.attach_events(events)

        job = await queue.enqueue("video-1", {"videoId": "1"})

        assert job.job_id == "video-1"


class TestRedisJobQueue:
    """Tests for the Redis backend with a mocked client."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.hsetnx = AsyncMock(return_value=True)
        client.hgetall = AsyncMock(return_value={})
        client.eval = AsyncMock()
        client.zcount = AsyncMock(return_value=0)
        client.zcard = AsyncMock(return_value=0)
        client.llen = AsyncMock(return_value=0)
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[1, 1])
        client.pipeline.return_value = pipe
        return client

    @pytest.fixture
    def redis(self, client):
        redis = MagicMock()
        redis.get_client.return_value = client
        redis.is_available = True
        return redis

    @pytest.fixture
    def queue(self, redis):
        return RedisJobQueue(redis, name="test", lease_ms=60_000, key_prefix="vx")

    def test_key_layout(self, queue):
        assert queue.job_key("video-1") == "vx:queue:test:job:video-1"
        assert queue.wait_key("high") == "vx:queue:test:wait:high"
        assert queue.active_key == "vx:queue:test:active"
        assert queue.completed_key == "vx:queue:test:completed"

    @pytest.mark.asyncio
    async def test_enqueue_new_job(self, queue, client):
        job = await queue.enqueue("video-1", {"videoId": "1"})

        assert job.state == JobState.WAITING.value
        client.hsetnx.assert_awaited_once_with("vx:queue:test:job:video-1", "job_id", "video-1")
        pipe = client.pipeline.return_value
        pipe.hset.assert_called_once()
        pipe.zadd.assert_called_once_with("vx:queue:test:wait:normal", {"video-1": job.ready_at_ms})
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_enqueue_duplicate_returns_existing(self, queue, client):
        client.hsetnx.return_value = False
        client.hgetall.return_value = Job(job_id="video-1", data={"videoId": "1"}, state="active").to_hash()

        job = await queue.enqueue("video-1", {"videoId": "1"})

        assert job.state == "active"
        client.pipeline.assert_not_called()

    @pytest.mark.asyncio
    async def test_enqueue_when_unavailable(self, queue, redis):
        redis.get_client.return_value = None
        with pytest.raises(QueueUnavailableError):
            await queue.enqueue("video-1", {"videoId": "1"})

    @pytest.mark.asyncio
    async def test_enqueue_error_records_failure(self, queue, client, redis):
        client.pipeline.return_value.execute.side_effect = ConnectionError("reset")

        with pytest.raises(QueueUnavailableError):
            await queue.enqueue("video-1", {"videoId": "1"})
        redis.record_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_claim_checks_priorities_in_order(self, queue, client):
        # recover, high (empty), normal (hit)
        client.eval.side_effect = [[], None, "video-1"]
        client.hgetall.return_value = Job(job_id="video-1", data={"videoId": "1"}, state="active").to_hash()

        job = await queue.claim("w1")

        assert job.job_id == "video-1"
        calls = client.eval.await_args_list
        assert calls[1].args[0] == CLAIM_SCRIPT
        assert calls[1].args[2] == "vx:queue:test:wait:high"
        assert calls[2].args[2] == "vx:queue:test:wait:normal"

    @pytest.mark.asyncio
    async def test_claim_nothing_ready(self, queue, client):
        client.eval.side_effect = [[], None, None, None]
        assert await queue.claim("w1") is None

    @pytest.mark.asyncio
    async def test_claim_error_returns_none(self, queue, client, redis):
        client.eval.side_effect = ConnectionError("reset")
        assert await queue.claim("w1") is None
        redis.record_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_claim_unavailable(self, queue, redis):
        redis.get_client.return_value = None
        assert await queue.claim("w1") is None

    @pytest.mark.asyncio
    async def test_complete_with_lease(self, queue, client):
        client.eval.return_value = 1
        job = Job(job_id="video-1", lease_token="w1:abc", remove_on_complete=5)

        assert await queue.complete(job) is True
        args = client.eval.await_args.args
        assert args[0] == FINISH_SCRIPT
        assert "w1:abc" in args
        assert job.state == JobState.COMPLETED.value

    @pytest.mark.asyncio
    async def test_complete_lost_lease(self, queue, client):
        client.eval.return_value = -1
        assert await queue.complete(Job(job_id="video-1", lease_token="w1:abc")) is False

    @pytest.mark.asyncio
    async def test_fail_schedules_retry(self, queue, client):
        client.eval.return_value = 1
        job = Job(job_id="video-1", lease_token="w1:abc", max_attempts=3)

        assert await queue.fail(job, "boom") == JobState.DELAYED.value
        assert client.eval.await_args.args[0] == RETRY_SCRIPT
        assert job.attempts_made == 1

    @pytest.mark.asyncio
    async def test_fail_last_attempt(self, queue, client):
        client.eval.return_value = 1
        job = Job(job_id="video-1", lease_token="w1:abc", max_attempts=2, attempts_made=1)

        assert await queue.fail(job, "boom") == JobState.FAILED.value
        assert client.eval.await_args.args[0] == FINISH_SCRIPT

    @pytest.mark.asyncio
    async def test_stats_when_unavailable(self, queue, redis):
        redis.get_client.return_value = None
        stats = await queue.get_queue_stats()
        assert stats["available"] is False


class TestCreateJobQueue:
    def test_disabled(self):
        assert create_job_queue("memory://", enabled=False) is None

    def test_empty_url(self):
        assert create_job_queue("") is None

    def test_memory(self):
        queue = create_job_queue("memory://", name="q")
        assert isinstance(queue, InMemoryJobQueue)
        assert queue.name == "q"

    def test_redis_available(self):
        redis = MagicMock()
        redis.is_available = True
        assert isinstance(create_job_queue("redis://localhost:6379", redis=redis), RedisJobQueue)

    def test_redis_unavailable(self):
        redis = MagicMock()
        redis.is_available = False
        assert create_job_queue("redis://localhost:6379", redis=redis) is None
        assert create_job_queue("redis://localhost:6379", redis=None) is None

    def test_unknown_scheme(self):
        assert create_job_queue("amqp://localhost") is None
