"""
Video detail read path.

The full projection (owner, subscription and like state, tags, transcript
summary, streaming block) is cached per (video, viewer, quality) for a short
TTL. Views are counted on every read by a non-owner, cached or not.
"""

import logging
from typing import Any, Dict, Optional

from api.detail_cache import VIDEO_DETAIL_SCOPE, DetailCacheType
from api.enums import ProcessingStatus
from api.errors import NotFoundError
from api.metrics import DETAIL_CACHE_LOOKUPS_TOTAL, VIDEO_VIEWS_TOTAL
from api.video_quality import build_video_streaming_payload
from api.video_store import VideoStore
from config import VIDEO_DETAIL_CACHE_TTL

logger = logging.getLogger(__name__)

DETAIL_MESSAGE = "Video fetched successfully"


def is_publicly_visible(video: Dict[str, Any]) -> bool:
    return (
        bool(video["is_published"])
        and bool(video["is_hls_ready"])
        and video["processing_status"] == ProcessingStatus.COMPLETED.value
        and not video["is_deleted"]
    )


def detail_cache_params(video_id: str, viewer_id: Optional[str], quality: Optional[str]) -> Dict[str, str]:
    return {
        "videoId": video_id,
        "viewerId": viewer_id or "anonymous",
        "quality": (quality or "auto").strip().lower() or "auto",
    }


async def build_video_detail(
    store: VideoStore,
    video: Dict[str, Any],
    viewer_id: Optional[str],
    quality: Optional[str],
) -> Dict[str, Any]:
    """Assemble the client-facing projection of one video."""
    video_id = video["id"]
    owner_id = video["owner_id"]
    is_owner = viewer_id is not None and viewer_id == owner_id

    owner = await store.get_user(owner_id) or {}
    streaming = build_video_streaming_payload(
        video["video_file"],
        playback_url=video["playback_url"],
        available_qualities=video["available_qualities"],
        requested_quality=quality,
        source_height=video["source_height"],
        master_playlist_url=video["master_playlist_url"],
    )
    transcript = await store.get_transcript(video_id)

    return {
        "id": video_id,
        "title": video["title"],
        "description": video["description"],
        "thumbnail": video["thumbnail"],
        "duration": video["duration"],
        "views": video["views"],
        "isShort": bool(video["is_short"]),
        "aspectRatio": video["aspect_ratio"],
        "createdAt": video["created_at"].isoformat() if video["created_at"] else None,
        "processingStatus": video["processing_status"],
        "playbackUrl": streaming["selectedPlaybackUrl"],
        "availableQualities": streaming["availableQualities"],
        "selectedQuality": streaming["selectedQuality"],
        "qualityUrls": streaming["qualityUrls"],
        "streaming": {
            "defaultQuality": streaming["defaultQuality"],
            "selectedQuality": streaming["selectedQuality"],
            "selectedPlaybackUrl": streaming["selectedPlaybackUrl"],
            "masterPlaylistUrl": streaming["masterPlaylistUrl"],
            "availableQualities": streaming["availableQualities"],
        },
        "owner": {
            "id": owner_id,
            "username": owner.get("username"),
            "fullName": owner.get("full_name"),
            "avatar": owner.get("avatar"),
            "subscribersCount": await store.count_subscribers(owner_id),
            "isSubscribed": bool(viewer_id) and not is_owner and await store.is_subscribed(viewer_id, owner_id),
        },
        "likesCount": await store.count_likes(video_id),
        "isLiked": bool(viewer_id) and await store.is_liked(video_id, viewer_id),
        "tags": await store.get_tag_names(video_id),
        "viewerContext": {"isOwner": is_owner},
        "transcript": {
            "hasTranscript": transcript is not None,
            "language": transcript["language"] if transcript else None,
            "wordCount": (transcript["word_count"] or 0) if transcript else 0,
            "updatedAt": transcript["updated_at"].isoformat() if transcript and transcript["updated_at"] else None,
        },
    }


async def get_video_detail(
    store: VideoStore,
    cache: DetailCacheType,
    video_id: str,
    viewer_id: Optional[str] = None,
    quality: Optional[str] = None,
    ttl_seconds: int = VIDEO_DETAIL_CACHE_TTL,
) -> Dict[str, Any]:
    """
    Read a video for a viewer.

    Non-owners only see published, HLS-ready, COMPLETED, non-deleted videos;
    owners also see their own unfinished ones. Each non-owner read adds a view.

    Returns:
        {"payload": <projection>, "message": str}

    Raises:
        NotFoundError: Unknown video, or not visible to this viewer
    """
    params = detail_cache_params(video_id, viewer_id, quality)

    lookup = await cache.get(VIDEO_DETAIL_SCOPE, params)
    DETAIL_CACHE_LOOKUPS_TOTAL.labels(source=lookup.source).inc()

    if lookup.hit:
        cached = lookup.value
        if cached["payload"]["viewerContext"]["isOwner"]:
            return cached
        # The cached payload is returned as stored; only the counter moves
        if await store.increment_views(video_id, public_only=True) is not None:
            VIDEO_VIEWS_TOTAL.inc()
            return cached
        # No longer visible; recompute, which raises NotFoundError
        logger.debug(f"Cached detail for {video_id} is stale, recomputing")
        await cache.invalidate(VIDEO_DETAIL_SCOPE, params)

    video = await store.get_video(video_id)
    if video is None or video["is_deleted"]:
        raise NotFoundError("Video not found")

    is_owner = viewer_id is not None and viewer_id == video["owner_id"]
    if not is_owner:
        if not is_publicly_visible(video):
            raise NotFoundError("Video not found")
        views = await store.increment_views(video_id, public_only=True)
        if views is None:
            raise NotFoundError("Video not found")
        VIDEO_VIEWS_TOTAL.inc()
        video["views"] = views

    result = {
        "payload": await build_video_detail(store, video, viewer_id, quality),
        "message": DETAIL_MESSAGE,
    }
    await cache.set(VIDEO_DETAIL_SCOPE, params, result, ttl_seconds=ttl_seconds)
    return result
