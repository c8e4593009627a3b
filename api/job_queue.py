"""
Job queue for video processing jobs.

Supports two backends behind the same interface:
- InMemoryJobQueue: single-process queue ("memory://"), used by embedded
  workers and tests
- RedisJobQueue: shared durable queue for separate worker processes

Contract:
- One job per video, id "video-{video_id}". Enqueueing an id the queue still
  holds (waiting, delayed, active or retained) returns the existing job.
- Failed attempts are retried with exponential backoff
  (delay * 2 ** (attempts_made - 1)) until the attempt cap is reached.
- Claimed jobs carry a lease; a job whose lease runs out is handed back to
  the waiting set on the next claim. The lease is the only per-job mutual
  exclusion between workers.
- Finished jobs are retained in bounded completed/failed lists; the oldest
  are dropped as new ones arrive.

Priority queue support with three levels, checked in order:
- high, normal (default), low
"""

import json
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional, Union

from api.enums import JobPriority, JobState, QueueEventType
from api.redis_client import RedisClient
from config import (
    JOB_ATTEMPTS,
    JOB_BACKOFF_DELAY_MS,
    JOB_KEEP_COMPLETED,
    JOB_KEEP_FAILED,
    JOB_LEASE_MS,
    QUEUE_NAME,
    REDIS_KEY_PREFIX,
)

logger = logging.getLogger(__name__)

PRIORITIES = [JobPriority.HIGH.value, JobPriority.NORMAL.value, JobPriority.LOW.value]  # Check order

FINISHED_STATES = (JobState.COMPLETED.value, JobState.FAILED.value)


class QueueUnavailableError(Exception):
    """The queue backend cannot be reached right now."""


def job_id_for(video_id: str) -> str:
    """Deterministic job id; the one-job-per-video invariant hangs off this."""
    return f"video-{video_id}"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ms_to_datetime(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def compute_backoff_ms(base_delay_ms: int, attempts_made: int) -> int:
    """Exponential backoff: base, 2x base, 4x base, ..."""
    return base_delay_ms * (2 ** max(0, attempts_made - 1))


@dataclass
class JobOptions:
    """Per-job retry and retention policy."""

    attempts: int = JOB_ATTEMPTS
    backoff_delay_ms: int = JOB_BACKOFF_DELAY_MS
    remove_on_complete: int = JOB_KEEP_COMPLETED
    remove_on_fail: int = JOB_KEEP_FAILED
    priority: str = JobPriority.NORMAL.value


@dataclass
class Job:
    """A queued unit of work for one video."""

    job_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    priority: str = JobPriority.NORMAL.value
    state: str = JobState.WAITING.value
    attempts_made: int = 0
    max_attempts: int = JOB_ATTEMPTS
    backoff_delay_ms: int = JOB_BACKOFF_DELAY_MS
    remove_on_complete: int = JOB_KEEP_COMPLETED
    remove_on_fail: int = JOB_KEEP_FAILED
    failed_reason: Optional[str] = None
    created_at_ms: int = 0
    ready_at_ms: int = 0
    processed_at_ms: Optional[int] = None
    finished_at_ms: Optional[int] = None
    # Set while a worker holds the job
    lease_token: Optional[str] = field(default=None, repr=False)
    lease_until_ms: Optional[int] = field(default=None, repr=False)

    @property
    def video_id(self) -> Optional[str]:
        return self.data.get("videoId")

    @property
    def created_at(self) -> Optional[datetime]:
        return _ms_to_datetime(self.created_at_ms)

    @property
    def processed_at(self) -> Optional[datetime]:
        return _ms_to_datetime(self.processed_at_ms)

    @property
    def finished_at(self) -> Optional[datetime]:
        return _ms_to_datetime(self.finished_at_ms)

    @property
    def is_finished(self) -> bool:
        return self.state in FINISHED_STATES

    def to_hash(self) -> Dict[str, str]:
        """Convert to Redis hash format (all string values)."""
        return {
            "job_id": self.job_id,
            "data": json.dumps(self.data),
            "priority": self.priority,
            "state": self.state,
            "attempts_made": str(self.attempts_made),
            "max_attempts": str(self.max_attempts),
            "backoff_delay_ms": str(self.backoff_delay_ms),
            "remove_on_complete": str(self.remove_on_complete),
            "remove_on_fail": str(self.remove_on_fail),
            "failed_reason": self.failed_reason or "",
            "created_at_ms": str(self.created_at_ms),
            "ready_at_ms": str(self.ready_at_ms),
            "processed_at_ms": str(self.processed_at_ms or ""),
            "finished_at_ms": str(self.finished_at_ms or ""),
            "lease_token": self.lease_token or "",
            "lease_until_ms": str(self.lease_until_ms or ""),
        }

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> "Job":
        """Create from a Redis hash."""

        def _int(name: str, default: int = 0) -> int:
            try:
                return int(data.get(name) or default)
            except (TypeError, ValueError):
                return default

        try:
            payload = json.loads(data.get("data") or "{}")
        except ValueError:
            payload = {}

        return cls(
            job_id=data["job_id"],
            data=payload,
            priority=data.get("priority") or JobPriority.NORMAL.value,
            state=data.get("state") or JobState.WAITING.value,
            attempts_made=_int("attempts_made"),
            max_attempts=_int("max_attempts", JOB_ATTEMPTS),
            backoff_delay_ms=_int("backoff_delay_ms", JOB_BACKOFF_DELAY_MS),
            remove_on_complete=_int("remove_on_complete", JOB_KEEP_COMPLETED),
            remove_on_fail=_int("remove_on_fail", JOB_KEEP_FAILED),
            failed_reason=data.get("failed_reason") or None,
            created_at_ms=_int("created_at_ms"),
            ready_at_ms=_int("ready_at_ms"),
            processed_at_ms=_int("processed_at_ms") or None,
            finished_at_ms=_int("finished_at_ms") or None,
            lease_token=data.get("lease_token") or None,
            lease_until_ms=_int("lease_until_ms") or None,
        )


def _normalize_priority(priority: Optional[str]) -> str:
    return priority if priority in PRIORITIES else JobPriority.NORMAL.value


class _QueueBase:
    """Behaviour shared by both backends: options, events and logging."""

    backend = "base"

    def __init__(self, name: str = QUEUE_NAME, lease_ms: int = JOB_LEASE_MS) -> None:
        self.name = name
        self.lease_ms = lease_ms
        self.events = None

    def attach_events(self, events) -> None:
        """Attach a queue event publisher (observational only)."""
        self.events = events

    async def _emit(self, event_type: QueueEventType, job_id: str, failed_reason: Optional[str] = None) -> None:
        if self.events is None:
            return
        try:
            await self.events.emit(event_type, job_id, failed_reason=failed_reason)
        except Exception as e:
            logger.debug(f"Queue event {event_type.value} for {job_id} not delivered: {e}")

    def _new_job(self, job_id: str, payload: Dict[str, Any], options: JobOptions, now_ms: int) -> Job:
        return Job(
            job_id=job_id,
            data=dict(payload),
            priority=_normalize_priority(options.priority),
            state=JobState.WAITING.value,
            max_attempts=max(1, options.attempts),
            backoff_delay_ms=max(0, options.backoff_delay_ms),
            remove_on_complete=max(0, options.remove_on_complete),
            remove_on_fail=max(0, options.remove_on_fail),
            created_at_ms=now_ms,
            ready_at_ms=now_ms,
        )


class InMemoryJobQueue(_QueueBase):
    """
    Job queue held in process memory.

    All mutations happen without awaiting in between, so each operation is
    atomic with respect to other coroutines on the same event loop.
    """

    backend = "memory"

    def __init__(
        self,
        name: str = QUEUE_NAME,
        lease_ms: int = JOB_LEASE_MS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        super().__init__(name=name, lease_ms=lease_ms)
        self._clock = clock or time.time
        self._jobs: Dict[str, Job] = {}
        self._completed: Deque[str] = deque()
        self._failed: Deque[str] = deque()
        self._sequence = 0
        self._order: Dict[str, int] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def enqueue(self, job_id: str, payload: Dict[str, Any], options: Optional[JobOptions] = None) -> Job:
        existing = self._jobs.get(job_id)
        if existing is not None:
            logger.debug(f"Job {job_id} already queued ({existing.state}), skipping duplicate")
            return existing

        job = self._new_job(job_id, payload, options or JobOptions(), self._now_ms())
        self._jobs[job_id] = job
        self._sequence += 1
        self._order[job_id] = self._sequence
        logger.debug(f"Enqueued job {job_id} ({job.priority})")
        await self._emit(QueueEventType.WAITING, job_id)
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def remove_job(self, job: Job) -> bool:
        removed = self._jobs.pop(job.job_id, None)
        self._order.pop(job.job_id, None)
        if removed is None:
            return False
        for finished in (self._completed, self._failed):
            if job.job_id in finished:
                finished.remove(job.job_id)
        logger.info(f"Removed job {job.job_id} (was {removed.state})")
        return True

    def _recover_stalled(self, now_ms: int) -> None:
        for job in self._jobs.values():
            if job.state == JobState.ACTIVE.value and job.lease_until_ms is not None and job.lease_until_ms <= now_ms:
                logger.warning(f"Recovered stalled job {job.job_id} (lease expired)")
                job.state = JobState.WAITING.value
                job.ready_at_ms = now_ms
                job.lease_token = None
                job.lease_until_ms = None

    async def claim(self, consumer: str) -> Optional[Job]:
        """
        Claim the next ready job, highest priority first, oldest ready time first.

        Returns:
            The claimed job (state active, lease set) or None if nothing is ready
        """
        now_ms = self._now_ms()
        self._recover_stalled(now_ms)

        for priority in PRIORITIES:
            ready = [
                job
                for job in self._jobs.values()
                if job.priority == priority
                and job.state in (JobState.WAITING.value, JobState.DELAYED.value)
                and job.ready_at_ms <= now_ms
            ]
            if not ready:
                continue
            job = min(ready, key=lambda j: (j.ready_at_ms, self._order.get(j.job_id, 0)))
            job.state = JobState.ACTIVE.value
            job.processed_at_ms = now_ms
            job.lease_token = f"{consumer}:{uuid.uuid4().hex}"
            job.lease_until_ms = now_ms + self.lease_ms
            logger.debug(f"{consumer} claimed job {job.job_id}")
            await self._emit(QueueEventType.ACTIVE, job.job_id)
            return job

        return None

    def _holds_lease(self, job: Job) -> Optional[Job]:
        current = self._jobs.get(job.job_id)
        if current is None or current.state != JobState.ACTIVE.value or current.lease_token != job.lease_token:
            logger.warning(f"Job {job.job_id} is no longer held by this worker, ignoring result")
            return None
        return current

    def _retain(self, finished: Deque[str], job_id: str, keep: int) -> None:
        finished.appendleft(job_id)
        while len(finished) > keep:
            evicted = finished.pop()
            self._jobs.pop(evicted, None)
            self._order.pop(evicted, None)

    async def complete(self, job: Job) -> bool:
        current = self._holds_lease(job)
        if current is None:
            return False
        current.state = JobState.COMPLETED.value
        current.finished_at_ms = self._now_ms()
        current.lease_token = None
        current.lease_until_ms = None
        job.state = current.state
        self._retain(self._completed, current.job_id, current.remove_on_complete)
        await self._emit(QueueEventType.COMPLETED, current.job_id)
        return True

    async def fail(self, job: Job, reason: str) -> Optional[str]:
        """
        Record a failed attempt.

        Returns:
            The job's new state ("delayed" when a retry is scheduled, "failed"
            once attempts are exhausted), or None if the job was no longer ours.
        """
        current = self._holds_lease(job)
        if current is None:
            return None

        current.attempts_made += 1
        current.failed_reason = reason
        current.lease_token = None
        current.lease_until_ms = None
        await self._emit(QueueEventType.FAILED, current.job_id, failed_reason=reason)

        if current.attempts_made < current.max_attempts:
            delay = compute_backoff_ms(current.backoff_delay_ms, current.attempts_made)
            current.state = JobState.DELAYED.value
            current.ready_at_ms = self._now_ms() + delay
            job.state = current.state
            logger.info(
                f"Job {current.job_id} failed (attempt {current.attempts_made}/{current.max_attempts}), "
                f"retrying in {delay}ms"
            )
            await self._emit(QueueEventType.DELAYED, current.job_id, failed_reason=reason)
            return current.state

        current.state = JobState.FAILED.value
        current.finished_at_ms = self._now_ms()
        job.state = current.state
        self._retain(self._failed, current.job_id, current.remove_on_fail)
        logger.warning(f"Job {current.job_id} permanently failed after {current.attempts_made} attempts: {reason}")
        return current.state

    async def get_counts(self) -> Dict[str, int]:
        now_ms = self._now_ms()
        counts = {state.value: 0 for state in JobState}
        for job in self._jobs.values():
            state = job.state
            if state == JobState.DELAYED.value and job.ready_at_ms <= now_ms:
                state = JobState.WAITING.value
            counts[state] += 1
        return counts

    async def get_queue_stats(self) -> Dict[str, Any]:
        return {"available": True, "backend": self.backend, "name": self.name, "counts": await self.get_counts()}

    async def close(self) -> None:
        self._jobs.clear()
        self._completed.clear()
        self._failed.clear()


# Claim the oldest ready job of one priority and move it to the active set.
CLAIM_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, 1)
if #ids == 0 then return false end
local id = ids[1]
redis.call('ZREM', KEYS[1], id)
local job_key = ARGV[4] .. id
if redis.call('EXISTS', job_key) == 0 then return false end
redis.call('ZADD', KEYS[2], ARGV[2], id)
redis.call('HSET', job_key, 'state', 'active', 'lease_token', ARGV[3], 'lease_until_ms', ARGV[2],
    'processed_at_ms', ARGV[1])
return id
"""

# Move jobs whose lease expired back to their priority's waiting set.
RECOVER_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, 50)
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
    local job_key = ARGV[2] .. id
    local priority = redis.call('HGET', job_key, 'priority')
    if priority then
        redis.call('ZADD', ARGV[3] .. priority, ARGV[1], id)
        redis.call('HSET', job_key, 'state', 'waiting', 'lease_token', '', 'lease_until_ms', '', 'ready_at_ms', ARGV[1])
    end
end
return ids
"""

# Finish a job held under the given lease and trim the retention list.
FINISH_SCRIPT = """
if redis.call('HGET', ARGV[1], 'lease_token') ~= ARGV[2] then return -1 end
redis.call('ZREM', KEYS[1], ARGV[3])
redis.call('HSET', ARGV[1], 'state', ARGV[4], 'finished_at_ms', ARGV[5], 'failed_reason', ARGV[6],
    'attempts_made', ARGV[7], 'lease_token', '', 'lease_until_ms', '')
redis.call('LPUSH', KEYS[2], ARGV[3])
local keep = tonumber(ARGV[8])
local stale = redis.call('LRANGE', KEYS[2], keep, -1)
for _, old in ipairs(stale) do redis.call('DEL', ARGV[9] .. old) end
if keep <= 0 then
    redis.call('DEL', KEYS[2])
else
    redis.call('LTRIM', KEYS[2], 0, keep - 1)
end
return 1
"""

# Put a job held under the given lease back into its waiting set for a retry.
RETRY_SCRIPT = """
if redis.call('HGET', ARGV[1], 'lease_token') ~= ARGV[2] then return -1 end
redis.call('ZREM', KEYS[1], ARGV[3])
redis.call('ZADD', KEYS[2], ARGV[4], ARGV[3])
redis.call('HSET', ARGV[1], 'state', 'delayed', 'ready_at_ms', ARGV[4], 'failed_reason', ARGV[5],
    'attempts_made', ARGV[6], 'lease_token', '', 'lease_until_ms', '')
return 1
"""


class RedisJobQueue(_QueueBase):
    """
    Job queue stored in Redis.

    Keys (prefix "{REDIS_KEY_PREFIX}:queue:{name}"):
    - job:{id}        hash with the job fields
    - wait:{priority} sorted set of waiting/delayed job ids, scored by ready time
    - active          sorted set of claimed job ids, scored by lease expiry
    - completed       list of retained completed job ids (newest first)
    - failed          list of retained failed job ids (newest first)

    Claims, finishes and retries run as Lua scripts so each is atomic across
    worker processes.
    """

    backend = "redis"

    def __init__(
        self,
        redis: RedisClient,
        name: str = QUEUE_NAME,
        lease_ms: int = JOB_LEASE_MS,
        key_prefix: str = REDIS_KEY_PREFIX,
    ) -> None:
        super().__init__(name=name, lease_ms=lease_ms)
        self._redis = redis
        self.prefix = f"{key_prefix}:queue:{name}"

    def job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    def wait_key(self, priority: str) -> str:
        return f"{self.prefix}:wait:{priority}"

    @property
    def active_key(self) -> str:
        return f"{self.prefix}:active"

    @property
    def completed_key(self) -> str:
        return f"{self.prefix}:completed"

    @property
    def failed_key(self) -> str:
        return f"{self.prefix}:failed"

    def _client(self):
        client = self._redis.get_client()
        if client is None:
            raise QueueUnavailableError("Redis is unavailable")
        return client

    async def enqueue(self, job_id: str, payload: Dict[str, Any], options: Optional[JobOptions] = None) -> Job:
        client = self._client()
        job = self._new_job(job_id, payload, options or JobOptions(), _now_ms())
        job_key = self.job_key(job_id)

        try:
            created = await client.hsetnx(job_key, "job_id", job_id)
            if not created:
                existing = await self.get_job(job_id)
                if existing is not None:
                    logger.debug(f"Job {job_id} already queued ({existing.state}), skipping duplicate")
                    return existing

            pipe = client.pipeline(transaction=True)
            pipe.hset(job_key, mapping=job.to_hash())
            pipe.zadd(self.wait_key(job.priority), {job_id: job.ready_at_ms})
            await pipe.execute()
            self._redis.record_success()
        except QueueUnavailableError:
            raise
        except Exception as e:
            self._redis.record_failure()
            logger.warning(f"Failed to enqueue job {job_id}: {e}")
            raise QueueUnavailableError(str(e)) from e

        logger.debug(f"Enqueued job {job_id} to {self.wait_key(job.priority)}")
        await self._emit(QueueEventType.WAITING, job_id)
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        client = self._client()
        data = await client.hgetall(self.job_key(job_id))
        if not data or "job_id" not in data:
            return None
        return Job.from_hash(data)

    async def remove_job(self, job: Job) -> bool:
        client = self._client()
        pipe = client.pipeline(transaction=True)
        for priority in PRIORITIES:
            pipe.zrem(self.wait_key(priority), job.job_id)
        pipe.zrem(self.active_key, job.job_id)
        pipe.lrem(self.completed_key, 0, job.job_id)
        pipe.lrem(self.failed_key, 0, job.job_id)
        pipe.delete(self.job_key(job.job_id))
        results = await pipe.execute()
        removed = bool(results[-1])
        if removed:
            logger.info(f"Removed job {job.job_id} (was {job.state})")
        return removed

    async def _recover_stalled(self, client, now_ms: int) -> None:
        recovered = await client.eval(
            RECOVER_SCRIPT, 1, self.active_key, now_ms, f"{self.prefix}:job:", f"{self.prefix}:wait:"
        )
        for job_id in recovered or []:
            logger.warning(f"Recovered stalled job {job_id} (lease expired)")

    async def claim(self, consumer: str) -> Optional[Job]:
        """
        Claim a job, checking priorities in order (high -> normal -> low).
        Also recovers jobs abandoned by crashed workers.

        Returns:
            Job if one was claimed, None if no jobs are ready or Redis is unavailable
        """
        client = self._redis.get_client()
        if client is None:
            return None

        try:
            now_ms = _now_ms()
            await self._recover_stalled(client, now_ms)

            token = f"{consumer}:{uuid.uuid4().hex}"
            lease_until = now_ms + self.lease_ms
            for priority in PRIORITIES:
                job_id = await client.eval(
                    CLAIM_SCRIPT,
                    2,
                    self.wait_key(priority),
                    self.active_key,
                    now_ms,
                    lease_until,
                    token,
                    f"{self.prefix}:job:",
                )
                if job_id:
                    job = await self.get_job(job_id)
                    if job is None:
                        continue
                    self._redis.record_success()
                    logger.debug(f"{consumer} claimed job {job_id}")
                    await self._emit(QueueEventType.ACTIVE, job_id)
                    return job
            return None
        except Exception as e:
            # RedisClient handles recovery via circuit breaker
            self._redis.record_failure()
            logger.warning(f"Redis claim failed: {e}")
            return None

    async def complete(self, job: Job) -> bool:
        client = self._client()
        result = await client.eval(
            FINISH_SCRIPT,
            2,
            self.active_key,
            self.completed_key,
            self.job_key(job.job_id),
            job.lease_token or "",
            job.job_id,
            JobState.COMPLETED.value,
            _now_ms(),
            job.failed_reason or "",
            job.attempts_made,
            job.remove_on_complete,
            f"{self.prefix}:job:",
        )
        if int(result) < 0:
            logger.warning(f"Job {job.job_id} is no longer held by this worker, ignoring result")
            return False
        job.state = JobState.COMPLETED.value
        await self._emit(QueueEventType.COMPLETED, job.job_id)
        return True

    async def fail(self, job: Job, reason: str) -> Optional[str]:
        """
        Record a failed attempt; schedules a retry until attempts are exhausted.

        Returns:
            "delayed", "failed", or None if the job was no longer ours
        """
        client = self._client()
        attempts_made = job.attempts_made + 1

        if attempts_made < job.max_attempts:
            ready_at = _now_ms() + compute_backoff_ms(job.backoff_delay_ms, attempts_made)
            result = await client.eval(
                RETRY_SCRIPT,
                2,
                self.active_key,
                self.wait_key(job.priority),
                self.job_key(job.job_id),
                job.lease_token or "",
                job.job_id,
                ready_at,
                reason,
                attempts_made,
            )
            new_state = JobState.DELAYED.value
        else:
            result = await client.eval(
                FINISH_SCRIPT,
                2,
                self.active_key,
                self.failed_key,
                self.job_key(job.job_id),
                job.lease_token or "",
                job.job_id,
                JobState.FAILED.value,
                _now_ms(),
                reason,
                attempts_made,
                job.remove_on_fail,
                f"{self.prefix}:job:",
            )
            new_state = JobState.FAILED.value

        if int(result) < 0:
            logger.warning(f"Job {job.job_id} is no longer held by this worker, ignoring failure")
            return None

        job.attempts_made = attempts_made
        job.failed_reason = reason
        job.state = new_state
        await self._emit(QueueEventType.FAILED, job.job_id, failed_reason=reason)
        if new_state == JobState.DELAYED.value:
            logger.info(f"Job {job.job_id} failed (attempt {attempts_made}/{job.max_attempts}), retry scheduled")
            await self._emit(QueueEventType.DELAYED, job.job_id, failed_reason=reason)
        else:
            logger.warning(f"Job {job.job_id} permanently failed after {attempts_made} attempts: {reason}")
        return new_state

    async def get_counts(self) -> Dict[str, int]:
        client = self._client()
        now_ms = _now_ms()
        counts = {state.value: 0 for state in JobState}
        for priority in PRIORITIES:
            counts[JobState.WAITING.value] += await client.zcount(self.wait_key(priority), "-inf", now_ms)
            counts[JobState.DELAYED.value] += await client.zcount(self.wait_key(priority), f"({now_ms}", "+inf")
        counts[JobState.ACTIVE.value] = await client.zcard(self.active_key)
        counts[JobState.COMPLETED.value] = await client.llen(self.completed_key)
        counts[JobState.FAILED.value] = await client.llen(self.failed_key)
        return counts

    async def get_queue_stats(self) -> Dict[str, Any]:
        """
        Get queue statistics.

        Returns:
            Dict with per-state counts and per-priority waiting lengths
        """
        if self._redis.get_client() is None:
            return {"available": False, "backend": self.backend, "name": self.name}

        stats: Dict[str, Any] = {"available": True, "backend": self.backend, "name": self.name, "priorities": {}}
        try:
            stats["counts"] = await self.get_counts()
            client = self._client()
            for priority in PRIORITIES:
                stats["priorities"][priority] = await client.zcard(self.wait_key(priority))
        except Exception as e:
            logger.warning(f"Failed to get queue stats: {e}")
            stats["available"] = False
        return stats

    async def close(self) -> None:
        # The Redis connection belongs to the service container
        pass


# Type alias for either queue implementation
JobQueueType = Union[InMemoryJobQueue, RedisJobQueue]


def create_job_queue(
    url: str,
    enabled: bool = True,
    redis: Optional[RedisClient] = None,
    name: str = QUEUE_NAME,
    lease_ms: int = JOB_LEASE_MS,
) -> Optional[JobQueueType]:
    """
    Factory function for the job queue.

    Args:
        url: "memory://" for an in-process queue, or a Redis URL
        enabled: Whether background processing is enabled at all
        redis: Connected RedisClient for the Redis backend
        name: Queue name
        lease_ms: How long a claimed job is held before it counts as stalled

    Returns:
        The queue, or None when processing is disabled or the backend is
        unreachable. Callers branch on None explicitly: videos are still
        created and stay PENDING.
    """
    if not enabled or not url:
        logger.info("Job queue disabled, videos will stay PENDING until processed")
        return None

    if url.startswith("memory://"):
        logger.info(f"Job queue '{name}' using in-process memory backend")
        return InMemoryJobQueue(name=name, lease_ms=lease_ms)

    if url.startswith(("redis://", "rediss://")):
        if redis is None or not redis.is_available:
            logger.warning(f"Redis unavailable at startup, job queue '{name}' disabled")
            return None
        logger.info(f"Job queue '{name}' using Redis backend")
        return RedisJobQueue(redis, name=name, lease_ms=lease_ms)

    logger.warning(f"Unsupported job queue URL scheme: {url.split('@')[-1]}, job queue disabled")
    return None
