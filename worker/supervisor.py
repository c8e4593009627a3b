"""
Lifecycle of an in-process worker pool.

States: STOPPED -> STARTING -> RUNNING <-> IDLE -> STOPPING -> STOPPED

- ensure_started(): lazy start, used after an enqueue when the API runs the
  worker on demand. In always-on mode it only wakes the running pool.
- force_start(): start regardless of policy.
- With idle shutdown on, the pool stops once nothing has been in flight and
  the queue has had no waiting, delayed or active jobs for idle_timeout
  seconds. Any activity moves IDLE back to RUNNING and resets the timer.
- A start requested while the pool is STOPPING waits for the stop to finish
  and then starts a fresh pool. An idle stop that finds work queued once the
  old pool is gone starts a fresh pool too.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from api.enums import JobState
from api.job_queue import JobQueueType
from api.metrics import WORKER_SUPERVISOR_STATE
from config import WORKER_IDLE_CHECK_INTERVAL, WORKER_IDLE_TIMEOUT
from worker.video_worker import VideoWorker

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    IDLE = "idle"
    STOPPING = "stopping"


BUSY_QUEUE_STATES = (JobState.WAITING.value, JobState.DELAYED.value, JobState.ACTIVE.value)


class WorkerSupervisor:
    """Starts, watches and stops one VideoWorker inside the current process."""

    def __init__(
        self,
        worker_factory: Callable[[], VideoWorker],
        queue: JobQueueType,
        on_demand: bool = True,
        idle_timeout: float = WORKER_IDLE_TIMEOUT,
        check_interval: float = WORKER_IDLE_CHECK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._worker_factory = worker_factory
        self.queue = queue
        self.on_demand = on_demand
        self.idle_timeout = idle_timeout
        self.check_interval = check_interval
        self._clock = clock
        self.state = SupervisorState.STOPPED
        self.worker: Optional[VideoWorker] = None
        self._worker_task: Optional[asyncio.Task] = None
        self._idle_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self.last_activity = clock()

    @property
    def is_running(self) -> bool:
        return self.state in (SupervisorState.RUNNING, SupervisorState.IDLE)

    def record_activity(self) -> None:
        self.last_activity = self._clock()
        if self.state == SupervisorState.IDLE:
            logger.debug("Worker pool active again")
            self.state = SupervisorState.RUNNING

    async def ensure_started(self) -> bool:
        """
        Make sure a pool is around to pick up newly enqueued work.

        Returns:
            True if this call started the pool
        """
        if self.is_running:
            self.record_activity()
            self.worker.notify()
            return False
        if not self.on_demand:
            return False
        return await self._start(reason="on demand")

    async def force_start(self) -> bool:
        if self.is_running:
            self.record_activity()
            return False
        return await self._start(reason="forced")

    async def _start(self, reason: str) -> bool:
        async with self._lock:
            if self.state != SupervisorState.STOPPED:
                return False
            self.state = SupervisorState.STARTING
            try:
                self.worker = self._worker_factory()
                self._worker_task = asyncio.create_task(self.worker.run())
            except Exception:
                self.state = SupervisorState.STOPPED
                self.worker = None
                raise
            self.last_activity = self._clock()
            self.state = SupervisorState.RUNNING
            WORKER_SUPERVISOR_STATE.set(1)
            if self.on_demand:
                self._idle_task = asyncio.create_task(self._idle_loop())
            logger.info(f"Worker pool started ({reason})")
            return True

    async def _queue_is_busy(self) -> bool:
        try:
            counts = await self.queue.get_counts()
        except Exception as e:
            logger.warning(f"Could not read queue counts, keeping worker pool up: {e}")
            return True
        return any(counts.get(state, 0) > 0 for state in BUSY_QUEUE_STATES)

    async def check_idle(self) -> bool:
        """
        One idle check.

        Returns:
            True if the pool was stopped by this check
        """
        if not self.is_running:
            return False

        if self.worker.in_flight > 0 or await self._queue_is_busy():
            self.record_activity()
            return False

        if self.state == SupervisorState.RUNNING:
            logger.debug("Worker pool idle")
            self.state = SupervisorState.IDLE

        idle_for = self._clock() - self.last_activity
        if idle_for >= self.idle_timeout:
            logger.info(f"Worker pool idle for {idle_for:.0f}s, stopping")
            await self.stop()
            # A job enqueued while the old pool was shutting down
            if self.on_demand and await self._queue_is_busy():
                await self._start(reason="work queued during shutdown")
            return True
        return False

    async def _idle_loop(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.check_interval)
            if await self.check_idle():
                break

    async def stop(self) -> None:
        """Stop the pool, letting in-flight jobs finish."""
        async with self._lock:
            if self.state == SupervisorState.STOPPED:
                return
            self.state = SupervisorState.STOPPING
            if self.worker is not None:
                self.worker.stop()
            if self._worker_task is not None:
                await asyncio.gather(self._worker_task, return_exceptions=True)
            if self._idle_task is not None and self._idle_task is not asyncio.current_task():
                self._idle_task.cancel()
                await asyncio.gather(self._idle_task, return_exceptions=True)
            self._worker_task = None
            self._idle_task = None
            self.worker = None
            self.state = SupervisorState.STOPPED
            WORKER_SUPERVISOR_STATE.set(0)
            logger.info("Worker pool stopped")
