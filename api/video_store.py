"""
Persistence for videos and the collaborator rows the detail projection reads.

Every processing write is a partial UPDATE of the named columns only, so a
worker checkpoint never clobbers fields it did not touch.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import sqlalchemy as sa
from databases import Database

from api.common import ensure_utc, utcnow
from api.database import (
    likes,
    subscriptions,
    tags,
    transcripts,
    users,
    video_analytics_snapshots,
    video_tags,
    videos,
)
from api.db_retry import (
    db_execute_with_retry,
    fetch_all_with_retry,
    fetch_one_with_retry,
    fetch_val_with_retry,
)
from api.enums import ProcessingStatus

logger = logging.getLogger(__name__)

DATETIME_FIELDS = ("processing_started_at", "processing_completed_at", "deleted_at", "created_at", "updated_at")


def new_id() -> str:
    return uuid.uuid4().hex


def encode_qualities(qualities: Optional[Iterable[str]]) -> Optional[str]:
    if qualities is None:
        return None
    return ",".join(str(q) for q in qualities)


def decode_qualities(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part for part in raw.split(",") if part]


def _video_from_row(row) -> Dict[str, Any]:
    video = dict(row._mapping)
    video["available_qualities"] = decode_qualities(video.get("available_qualities"))
    for name in DATETIME_FIELDS:
        video[name] = ensure_utc(video.get(name))
    return video


def visible_to_public():
    """Rows a non-owner may see."""
    return sa.and_(
        videos.c.is_published.is_(True),
        videos.c.is_hls_ready.is_(True),
        videos.c.processing_status == ProcessingStatus.COMPLETED.value,
        videos.c.is_deleted.is_(False),
    )


class VideoStore:
    """Queries against the videos table and its read-only neighbours."""

    def __init__(self, db: Database):
        self.db = db

    # --- videos ---

    async def create_video(self, owner_id: str, fields: Dict[str, Any], tag_names: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Insert a video row in its initial unprocessed state.

        Args:
            owner_id: Owning user
            fields: Descriptive and media columns (title, description, video_file, ...)
            tag_names: Optional tags to attach

        Returns:
            The stored video
        """
        now = utcnow()
        video_id = new_id()
        values = {
            "id": video_id,
            "owner_id": owner_id,
            "title": fields["title"],
            "description": fields.get("description") or "",
            "duration": fields.get("duration") or 0,
            "source_width": fields.get("source_width"),
            "source_height": fields.get("source_height"),
            "is_short": bool(fields.get("is_short", False)),
            "aspect_ratio": fields.get("aspect_ratio"),
            "video_file": fields.get("video_file"),
            "video_public_id": fields.get("video_public_id"),
            "thumbnail": fields.get("thumbnail"),
            "thumbnail_public_id": fields.get("thumbnail_public_id"),
            "playback_url": fields.get("playback_url"),
            "master_playlist_url": fields.get("master_playlist_url"),
            "available_qualities": encode_qualities(fields.get("available_qualities")),
            "processing_status": ProcessingStatus.PENDING.value,
            "processing_progress": 0,
            "processing_step": None,
            "processing_error": None,
            "processing_started_at": None,
            "processing_completed_at": None,
            "is_published": False,
            "is_hls_ready": False,
            "is_deleted": False,
            "deleted_at": None,
            "views": 0,
            "created_at": now,
            "updated_at": now,
        }

        async with self.db.transaction():
            await self.db.execute(videos.insert().values(**values))
            if tag_names:
                await self._attach_tags(video_id, tag_names)

        logger.info(f"Created video {video_id} for owner {owner_id}")
        return await self.get_video(video_id)

    async def get_video(self, video_id: str) -> Optional[Dict[str, Any]]:
        row = await fetch_one_with_retry(self.db, videos.select().where(videos.c.id == video_id))
        if row is None:
            return None
        return _video_from_row(row)

    async def update_video(self, video_id: str, **fields: Any) -> None:
        """Partial update of the named columns; updated_at is always refreshed."""
        if "available_qualities" in fields:
            fields["available_qualities"] = encode_qualities(fields["available_qualities"])
        fields["updated_at"] = utcnow()
        await db_execute_with_retry(self.db, videos.update().where(videos.c.id == video_id).values(**fields))

    async def increment_views(self, video_id: str, public_only: bool = True) -> Optional[int]:
        """
        Atomically add one view.

        Args:
            video_id: Video to count
            public_only: Only count while the video is publicly visible

        Returns:
            The new view count, or None if no row matched
        """
        query = videos.update().where(videos.c.id == video_id)
        if public_only:
            query = query.where(visible_to_public())
        query = query.values(views=videos.c.views + 1).returning(videos.c.views)
        row = await fetch_one_with_retry(self.db, query, idempotent=False)
        if row is None:
            return None
        return row["views"]

    async def delete_video(self, video_id: str) -> bool:
        """Hard delete. Dependent rows go with it via ON DELETE CASCADE."""
        async with self.db.transaction():
            # SQLite only cascades with foreign_keys switched on; clear children explicitly
            for child in (video_analytics_snapshots, video_tags, likes, transcripts):
                await self.db.execute(child.delete().where(child.c.video_id == video_id))
            deleted = await self.db.fetch_one(
                videos.delete().where(videos.c.id == video_id).returning(videos.c.id)
            )
        return deleted is not None

    async def list_expired_deleted(self, cutoff: datetime, limit: int) -> List[Dict[str, Any]]:
        """Soft-deleted videos whose deleted_at is older than cutoff, oldest first."""
        query = (
            videos.select()
            .where(videos.c.is_deleted.is_(True))
            .where(videos.c.deleted_at.is_not(None))
            .where(videos.c.deleted_at < cutoff)
            .order_by(videos.c.deleted_at)
            .limit(limit)
        )
        rows = await fetch_all_with_retry(self.db, query)
        return [_video_from_row(row) for row in rows]

    # --- analytics ---

    async def create_analytics_snapshot(self, video_id: str) -> str:
        """Append a zeroed analytics snapshot dated now."""
        snapshot_id = new_id()
        await db_execute_with_retry(
            self.db,
            video_analytics_snapshots.insert().values(
                id=snapshot_id,
                video_id=video_id,
                views=0,
                likes=0,
                comments=0,
                shares=0,
                watch_time_seconds=0,
                snapshot_date=utcnow(),
            ),
        )
        return snapshot_id

    async def count_analytics_snapshots(self, video_id: str) -> int:
        query = (
            sa.select(sa.func.count())
            .select_from(video_analytics_snapshots)
            .where(video_analytics_snapshots.c.video_id == video_id)
        )
        return await fetch_val_with_retry(self.db, query) or 0

    # --- collaborators (read-only for processing) ---

    async def create_user(self, user_id: str, username: str, full_name: Optional[str] = None, avatar: Optional[str] = None) -> None:
        await self.db.execute(
            users.insert().values(id=user_id, username=username, full_name=full_name, avatar=avatar, created_at=utcnow())
        )

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = await fetch_one_with_retry(self.db, users.select().where(users.c.id == user_id))
        return dict(row._mapping) if row else None

    async def is_subscribed(self, subscriber_id: str, channel_id: str) -> bool:
        query = sa.select(subscriptions.c.id).where(
            subscriptions.c.subscriber_id == subscriber_id,
            subscriptions.c.channel_id == channel_id,
        )
        return await fetch_one_with_retry(self.db, query) is not None

    async def is_liked(self, video_id: str, user_id: str) -> bool:
        query = sa.select(likes.c.id).where(likes.c.video_id == video_id, likes.c.user_id == user_id)
        return await fetch_one_with_retry(self.db, query) is not None

    async def count_likes(self, video_id: str) -> int:
        query = sa.select(sa.func.count()).select_from(likes).where(likes.c.video_id == video_id)
        return await fetch_val_with_retry(self.db, query) or 0

    async def count_subscribers(self, channel_id: str) -> int:
        query = sa.select(sa.func.count()).select_from(subscriptions).where(subscriptions.c.channel_id == channel_id)
        return await fetch_val_with_retry(self.db, query) or 0

    async def get_tag_names(self, video_id: str) -> List[str]:
        query = (
            sa.select(tags.c.name)
            .select_from(tags.join(video_tags, video_tags.c.tag_id == tags.c.id))
            .where(video_tags.c.video_id == video_id)
            .order_by(tags.c.name)
        )
        rows = await fetch_all_with_retry(self.db, query)
        return [row["name"] for row in rows]

    async def _attach_tags(self, video_id: str, tag_names: List[str]) -> None:
        seen = set()
        for raw_name in tag_names:
            name = raw_name.strip().lower()
            if not name or name in seen:
                continue
            seen.add(name)
            tag_id = await self.db.fetch_val(sa.select(tags.c.id).where(tags.c.name == name))
            if tag_id is None:
                tag_id = new_id()
                await self.db.execute(tags.insert().values(id=tag_id, name=name, created_at=utcnow()))
            await self.db.execute(video_tags.insert().values(video_id=video_id, tag_id=tag_id))

    async def get_transcript(self, video_id: str) -> Optional[Dict[str, Any]]:
        row = await fetch_one_with_retry(self.db, transcripts.select().where(transcripts.c.video_id == video_id))
        if row is None:
            return None
        transcript = dict(row._mapping)
        transcript["updated_at"] = ensure_utc(transcript.get("updated_at"))
        return transcript
