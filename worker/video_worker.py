"""
Video processing worker.

Consumes "video-{id}" jobs from the processing queue and drives each video
through PROCESSING to COMPLETED. Cancellation is cooperative: the processor
re-reads the video at fixed checkpoints and stops without further writes when
the video was cancelled or deleted in the meantime.

Run standalone with `vixora worker`; the API process can also host a pool
(see worker.supervisor).
"""

import asyncio
import logging
import signal
import time
import uuid
from typing import Optional, Set

from api.asset_store import derive_thumbnail_url
from api.common import utcnow
from api.enums import CheckpointResult, ProcessingStatus, ProcessingStep
from api.job_queue import Job, JobQueueType
from api.metrics import (
    PROCESSING_JOB_DURATION_SECONDS,
    PROCESSING_JOBS_ACTIVE,
    PROCESSING_JOBS_TOTAL,
)
from api.video_quality import build_auto_playback_url, normalize_available_qualities
from api.video_store import VideoStore
from config import THUMBNAIL_OFFSET_SECONDS, WORKER_CONCURRENCY, WORKER_POLL_INTERVAL

logger = logging.getLogger(__name__)


class VideoProcessor:
    """Runs one processing pass for a single video."""

    def __init__(self, store: VideoStore, thumbnail_offset_seconds: int = THUMBNAIL_OFFSET_SECONDS):
        self.store = store
        self.thumbnail_offset_seconds = thumbnail_offset_seconds

    async def check_not_cancelled(self, video_id: str) -> CheckpointResult:
        """Re-read the video; stop if it is gone or was cancelled."""
        video = await self.store.get_video(video_id)
        if video is None:
            logger.info(f"Video {video_id} no longer exists, stopping")
            return CheckpointResult.GONE
        if video["processing_status"] == ProcessingStatus.CANCELLED.value:
            logger.info(f"Processing cancelled for video {video_id}, stopping")
            return CheckpointResult.CANCELLED
        return CheckpointResult.CONTINUE

    async def process(
        self,
        video_id: str,
        step: ProcessingStep = ProcessingStep.BACKGROUND_TASKS,
        progress: int = 10,
    ) -> CheckpointResult:
        """
        Process one video.

        Args:
            video_id: Video to process
            step: Step label written when processing starts
            progress: Progress written when processing starts

        Returns:
            CONTINUE when the video reached COMPLETED, or the checkpoint result
            that stopped processing early (CANCELLED / GONE)

        Raises:
            Any unexpected error, after the video has been marked FAILED
        """
        try:
            result = await self.check_not_cancelled(video_id)
            if result != CheckpointResult.CONTINUE:
                return result

            await self.store.update_video(
                video_id,
                processing_status=ProcessingStatus.PROCESSING.value,
                processing_started_at=utcnow(),
                processing_progress=progress,
                processing_step=step.value,
                processing_error=None,
            )

            result = await self.check_not_cancelled(video_id)
            if result != CheckpointResult.CONTINUE:
                return result

            # A retry after a crash past this point appends a second snapshot
            await self.store.create_analytics_snapshot(video_id)

            result = await self.check_not_cancelled(video_id)
            if result != CheckpointResult.CONTINUE:
                return result

            video = await self.store.get_video(video_id)
            if video is None:
                return CheckpointResult.GONE

            if not video["thumbnail"] and video["video_file"]:
                thumbnail = derive_thumbnail_url(video["video_file"], self.thumbnail_offset_seconds)
                # A derived frame is a transform of the source asset and shares its public id
                await self.store.update_video(
                    video_id,
                    thumbnail=thumbnail,
                    thumbnail_public_id=video["video_public_id"],
                    processing_progress=60,
                    processing_step=ProcessingStep.THUMBNAIL.value,
                )
                logger.debug(f"Derived thumbnail for video {video_id}")

            await self.store.update_video(
                video_id,
                processing_status=ProcessingStatus.COMPLETED.value,
                processing_completed_at=utcnow(),
                processing_progress=100,
                processing_step=ProcessingStep.DONE.value,
                is_published=True,
                is_hls_ready=True,
                playback_url=build_auto_playback_url(video["video_file"], video["playback_url"]),
                available_qualities=normalize_available_qualities(
                    video["available_qualities"], video["source_height"]
                ),
            )
            logger.info(f"Video {video_id} processed")
            return CheckpointResult.CONTINUE

        except Exception as e:
            logger.exception(f"Processing failed for video {video_id}")
            try:
                await self.store.update_video(
                    video_id,
                    processing_status=ProcessingStatus.FAILED.value,
                    processing_error=str(e),
                )
            except Exception as write_error:
                logger.error(f"Could not mark video {video_id} as FAILED: {write_error}")
            raise


class WorkerState:
    """Mutable state for one worker pool instance."""

    def __init__(self, worker_id: Optional[str] = None):
        self.worker_id = worker_id or str(uuid.uuid4())
        self.shutdown_requested = False
        self.wakeup_event = asyncio.Event()

    def request_shutdown(self):
        """Request graceful shutdown: in-flight jobs finish, no new claims."""
        self.shutdown_requested = True
        self.wakeup_event.set()

    def notify(self):
        """Wake the claim loop early (new job enqueued, slot freed)."""
        self.wakeup_event.set()


class VideoWorker:
    """
    Pool of up to `concurrency` concurrent processing runs fed from the queue.

    Successful runs and early stops (cancelled / gone) complete the job;
    exceptions fail it, and the queue decides whether to retry.
    """

    def __init__(
        self,
        queue: JobQueueType,
        processor: VideoProcessor,
        concurrency: int = WORKER_CONCURRENCY,
        poll_interval: float = WORKER_POLL_INTERVAL,
        state: Optional[WorkerState] = None,
    ):
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.state = state or WorkerState()
        self.consumer = f"worker-{self.state.worker_id[:8]}"
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def notify(self) -> None:
        self.state.notify()

    def stop(self) -> None:
        self.state.request_shutdown()

    async def handle_job(self, job: Job) -> None:
        """Process one claimed job and report the outcome to the queue."""
        video_id = job.video_id
        if not video_id:
            logger.error(f"Job {job.job_id} has no videoId, failing it")
            await self.queue.fail(job, "Job payload has no videoId")
            return

        PROCESSING_JOBS_ACTIVE.inc()
        start = time.monotonic()
        try:
            result = await self.processor.process(video_id)
        except Exception as e:
            PROCESSING_JOBS_TOTAL.labels(outcome="failed").inc()
            await self.queue.fail(job, str(e))
            return
        finally:
            PROCESSING_JOBS_ACTIVE.dec()
            PROCESSING_JOB_DURATION_SECONDS.observe(time.monotonic() - start)

        outcome = {
            CheckpointResult.CONTINUE: "completed",
            CheckpointResult.CANCELLED: "cancelled",
            CheckpointResult.GONE: "gone",
        }[result]
        PROCESSING_JOBS_TOTAL.labels(outcome=outcome).inc()
        await self.queue.complete(job)

    async def _run_job(self, job: Job) -> None:
        try:
            await self.handle_job(job)
        except Exception:
            # Queue bookkeeping failed; the lease expires and the job is retried elsewhere
            logger.exception(f"Error while finishing job {job.job_id}")

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self.state.notify()

    async def fill_slots(self) -> int:
        """Claim jobs until the pool is full or the queue has nothing ready."""
        claimed = 0
        while self.in_flight < self.concurrency and not self.state.shutdown_requested:
            job = await self.queue.claim(self.consumer)
            if job is None:
                break
            task = asyncio.create_task(self._run_job(job))
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
            claimed += 1
        return claimed

    async def run(self) -> None:
        """Claim loop. Returns after shutdown once in-flight jobs have finished."""
        logger.info(f"Video worker {self.consumer} started (concurrency {self.concurrency})")
        try:
            while not self.state.shutdown_requested:
                await self.fill_slots()
                if self.state.shutdown_requested:
                    break
                try:
                    await asyncio.wait_for(self.state.wakeup_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                self.state.wakeup_event.clear()
        finally:
            await self.drain()
            logger.info(f"Video worker {self.consumer} stopped")

    async def drain(self) -> None:
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} in-flight job(s) to finish...")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _install_signal_handlers(state: WorkerState) -> None:
    def signal_handler(sig, frame):
        sig_name = signal.strsignal(sig) if hasattr(signal, "strsignal") else str(sig)
        logger.info(f"{sig_name} received, finishing current jobs and shutting down gracefully...")
        state.request_shutdown()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


async def run_worker(concurrency: int = WORKER_CONCURRENCY) -> int:
    """
    Standalone worker process entrypoint.

    Returns:
        Process exit code
    """
    from api.services import AppServices

    services = await AppServices.create()
    try:
        if services.queue is None:
            logger.error("Job queue is not available, cannot start a worker")
            return 1

        worker = VideoWorker(services.queue, VideoProcessor(services.store), concurrency=concurrency)
        _install_signal_handlers(worker.state)
        await worker.run()
        return 0
    finally:
        await services.close()
