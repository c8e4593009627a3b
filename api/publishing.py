"""
Publishing and lifecycle operations: publish, soft delete, restore and
permanent delete.

A video is created PENDING, unpublished and not HLS ready, then handed to the
processing queue. When the queue is absent the video stays PENDING, unless
inline fallback processing is switched on.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Set

from api.asset_ownership import verify_asset_ownership
from api.asset_store import AssetStore
from api.common import ensure_utc, utcnow
from api.enums import AssetKind, ProcessingStatus, ProcessingStep
from api.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from api.job_queue import JobOptions, JobQueueType, job_id_for
from api.metrics import ASSET_CLEANUP_FAILURES_TOTAL, VIDEO_PUBLISHES_TOTAL
from api.processing import remove_outstanding_job
from api.schemas import PublishVideoRequest
from api.video_store import VideoStore
from config import INLINE_PROCESSING_FALLBACK, SOFT_DELETE_GRACE_DAYS

logger = logging.getLogger(__name__)

# Strong references to fire-and-forget inline processing tasks
_background_tasks: Set[asyncio.Task] = set()

UNFINISHED_STATUSES = (ProcessingStatus.PENDING.value, ProcessingStatus.PROCESSING.value)


async def enqueue_processing(
    queue: Optional[JobQueueType],
    video_id: str,
    supervisor=None,
) -> bool:
    """
    Queue the processing job for a video.

    Returns:
        True if the job is (or already was) in the queue
    """
    if queue is None:
        logger.info(f"No job queue available, video {video_id} stays PENDING")
        return False

    try:
        await queue.enqueue(job_id_for(video_id), {"videoId": video_id}, JobOptions())
    except Exception as e:
        logger.warning(f"Enqueue failed for video {video_id}: {e}")
        return False

    if supervisor is not None:
        try:
            await supervisor.ensure_started()
        except Exception as e:
            logger.warning(f"Could not start worker pool after enqueue: {e}")
    return True


def start_inline_processing(store: VideoStore, video_id: str) -> asyncio.Task:
    """Process a video in a background task of the current process (no retries)."""
    from worker.video_worker import VideoProcessor

    processor = VideoProcessor(store)

    async def _run():
        try:
            await processor.process(video_id, step=ProcessingStep.FALLBACK_PROCESSING, progress=20)
        except Exception as e:
            logger.error(f"Inline processing failed for video {video_id}: {e}")

    task = asyncio.create_task(_run())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def publish_video(
    store: VideoStore,
    assets: AssetStore,
    queue: Optional[JobQueueType],
    owner_id: Optional[str],
    request: PublishVideoRequest,
    supervisor=None,
    inline_fallback: bool = INLINE_PROCESSING_FALLBACK,
) -> Dict[str, Any]:
    """
    Create a video from assets the owner uploaded to the asset store.

    Both public ids are checked against the asset store and must live in the
    owner's folders; the stored URLs come from the asset store's answer only.

    Returns:
        The created video row

    Raises:
        ForbiddenError: No caller identity, or an asset outside the owner's folder
        NotFoundError: Unknown owner or asset
        ValidationError: Bad input
        UpstreamError: Asset store failure
    """
    if not owner_id:
        raise ForbiddenError("Authentication required")

    owner = await store.get_user(owner_id)
    if owner is None:
        raise NotFoundError("User not found")

    video_resource = await verify_asset_ownership(
        assets, request.video_public_id, f"videos/{owner_id}", candidate_kinds=[AssetKind.VIDEO.value]
    )
    thumb_resource = None
    if request.thumbnail_public_id:
        thumb_resource = await verify_asset_ownership(
            assets, request.thumbnail_public_id, f"thumbnails/{owner_id}", candidate_kinds=[AssetKind.IMAGE.value]
        )

    video_url = video_resource.get("secure_url")
    if not video_url:
        raise ValidationError("Asset store returned no URL for the video")

    width = request.width or video_resource.get("width")
    height = request.height or video_resource.get("height")
    duration = request.duration if request.duration is not None else video_resource.get("duration")

    fields = {
        "title": request.title,
        "description": request.description,
        "duration": round(duration) if duration else 0,
        "source_width": width,
        "source_height": height,
        "is_short": request.is_short,
        "aspect_ratio": f"{width}:{height}" if width and height else None,
        "video_file": video_url,
        "video_public_id": video_resource.get("public_id") or request.video_public_id,
        "thumbnail": thumb_resource.get("secure_url") if thumb_resource else None,
        "thumbnail_public_id": (thumb_resource.get("public_id") or request.thumbnail_public_id) if thumb_resource else None,
    }
    video = await store.create_video(owner_id, fields, tag_names=request.tags)

    if await enqueue_processing(queue, video["id"], supervisor=supervisor):
        VIDEO_PUBLISHES_TOTAL.labels(result="enqueued").inc()
    elif inline_fallback:
        logger.info(f"Falling back to inline processing for video {video['id']}")
        start_inline_processing(store, video["id"])
        VIDEO_PUBLISHES_TOTAL.labels(result="inline").inc()
    else:
        VIDEO_PUBLISHES_TOTAL.labels(result="pending").inc()

    return video


async def get_owned_video(store: VideoStore, video_id: str, requester_id: Optional[str], action: str) -> Dict[str, Any]:
    video = await store.get_video(video_id)
    if video is None:
        raise NotFoundError("Video not found")
    if not requester_id or video["owner_id"] != requester_id:
        raise ForbiddenError(f"You are not allowed to {action} this video")
    return video


async def soft_delete_video(
    store: VideoStore,
    queue: Optional[JobQueueType],
    video_id: str,
    requester_id: Optional[str],
) -> Dict[str, Any]:
    """Mark a video deleted; it can be restored within the grace window."""
    video = await get_owned_video(store, video_id, requester_id, "delete")
    if video["is_deleted"]:
        raise InvalidStateError("Video is already deleted")

    await remove_outstanding_job(queue, video_id)
    await store.update_video(video_id, is_deleted=True, deleted_at=utcnow())
    logger.info(f"Soft-deleted video {video_id}")
    return await store.get_video(video_id)


async def restore_video(
    store: VideoStore,
    queue: Optional[JobQueueType],
    video_id: str,
    requester_id: Optional[str],
    grace_days: int = SOFT_DELETE_GRACE_DAYS,
    supervisor=None,
) -> Dict[str, Any]:
    """
    Undo a soft delete inside the grace window.

    Processing that was still outstanding when the video was deleted is
    queued again.
    """
    video = await get_owned_video(store, video_id, requester_id, "restore")
    if not video["is_deleted"]:
        raise InvalidStateError("Video is not deleted")

    deleted_at = ensure_utc(video["deleted_at"])
    if deleted_at is None or utcnow() - deleted_at > timedelta(days=grace_days):
        raise InvalidStateError("Restore window has expired")

    await store.update_video(video_id, is_deleted=False, deleted_at=None)
    logger.info(f"Restored video {video_id}")

    if video["processing_status"] in UNFINISHED_STATUSES:
        await enqueue_processing(queue, video_id, supervisor=supervisor)

    return await store.get_video(video_id)


async def destroy_remote_assets(assets: AssetStore, video: Dict[str, Any]) -> int:
    """
    Delete a video's assets from the asset store.

    Failures are logged and counted, never raised.

    Returns:
        Number of assets that could not be deleted
    """
    failures = 0
    targets = [
        (video.get("video_public_id"), AssetKind.VIDEO.value),
        (video.get("thumbnail_public_id"), AssetKind.IMAGE.value),
    ]
    for public_id, kind in targets:
        if not public_id:
            continue
        if kind == AssetKind.IMAGE.value and public_id == video.get("video_public_id"):
            # Derived thumbnail, removed with its source video
            continue
        try:
            result = await assets.destroy(public_id, kind)
            if result.get("result") != "ok":
                raise RuntimeError(f"asset store answered {result.get('result')!r}")
        except Exception as e:
            failures += 1
            ASSET_CLEANUP_FAILURES_TOTAL.labels(kind=kind).inc()
            logger.warning(f"Failed to delete {kind} asset {public_id} for video {video['id']}: {e}")
    return failures


async def delete_video_permanently(
    store: VideoStore,
    assets: AssetStore,
    queue: Optional[JobQueueType],
    video_id: str,
    requester_id: Optional[str],
) -> None:
    """Delete the row first, then clean up remote assets best-effort."""
    video = await get_owned_video(store, video_id, requester_id, "delete")

    await remove_outstanding_job(queue, video_id)
    await store.delete_video(video_id)
    logger.info(f"Permanently deleted video {video_id}")

    await destroy_remote_assets(assets, video)
