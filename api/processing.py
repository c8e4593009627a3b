"""
Processing status projection and cancellation.
"""

import logging
from typing import Any, Dict, Optional

from api.enums import ProcessingStatus
from api.errors import ForbiddenError, InvalidStateError, NotFoundError, sanitize_error_message
from api.job_queue import JobQueueType, job_id_for
from api.video_store import VideoStore

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (ProcessingStatus.PENDING.value, ProcessingStatus.PROCESSING.value)


def status_projection(video: Dict[str, Any]) -> Dict[str, Any]:
    """Client-facing view of a video's processing state."""
    return {
        "videoId": video["id"],
        "processingStatus": video["processing_status"],
        "processingProgress": video["processing_progress"],
        "processingStep": video["processing_step"],
        "processingError": sanitize_error_message(video["processing_error"], context=f"video_id={video['id']}"),
        "processingStartedAt": video["processing_started_at"],
        "processingCompletedAt": video["processing_completed_at"],
        "isHlsReady": bool(video["is_hls_ready"]),
        "isPublished": bool(video["is_published"]),
    }


async def get_processing_status(store: VideoStore, video_id: str) -> Dict[str, Any]:
    video = await store.get_video(video_id)
    if video is None:
        raise NotFoundError("Video not found")
    return status_projection(video)


async def remove_outstanding_job(queue: Optional[JobQueueType], video_id: str) -> bool:
    """
    Best-effort removal of a video's queued or in-flight job.

    A job that already completed or failed is left alone. Queue errors are
    logged and never propagate; the caller's status write proceeds anyway.
    """
    if queue is None:
        return False

    job_id = job_id_for(video_id)
    try:
        job = await queue.get_job(job_id)
        if job is None or job.is_finished:
            return False
        return await queue.remove_job(job)
    except Exception as e:
        logger.warning(f"Could not remove job {job_id}: {e}")
        return False


async def cancel_processing(
    store: VideoStore,
    queue: Optional[JobQueueType],
    video_id: str,
    requester_id: Optional[str],
) -> Dict[str, Any]:
    """
    Cancel processing for a video owned by the requester.

    Raises:
        NotFoundError: Unknown video
        ForbiddenError: Requester is not the owner
        InvalidStateError: Video is not PENDING or PROCESSING

    Returns:
        The updated status projection
    """
    video = await store.get_video(video_id)
    if video is None:
        raise NotFoundError("Video not found")

    if not requester_id or video["owner_id"] != requester_id:
        raise ForbiddenError("Not allowed to cancel processing for this video")

    if video["processing_status"] not in CANCELLABLE_STATUSES:
        raise InvalidStateError("Video cannot be cancelled now")

    removed = await remove_outstanding_job(queue, video_id)

    # A worker between checkpoints may still overwrite this; last write wins.
    await store.update_video(
        video_id,
        processing_status=ProcessingStatus.CANCELLED.value,
        is_published=False,
    )
    logger.info(f"Cancelled processing for video {video_id} (job removed: {removed})")

    updated = await store.get_video(video_id)
    return status_projection(updated or video)
