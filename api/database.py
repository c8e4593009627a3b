from datetime import datetime, timezone

import sqlalchemy as sa
from databases import Database

from config import DATABASE_URL

# Default database instance - works with PostgreSQL or SQLite
# PostgreSQL is the default and recommended database
database = Database(DATABASE_URL)
metadata = sa.MetaData()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def configure_database(db: Database = database):
    """
    Configure database-specific settings after connection.
    SQLite needs foreign keys switched on per connection; PostgreSQL enforces them already.
    """
    if str(db.url).startswith("sqlite"):
        await db.execute("PRAGMA foreign_keys = ON")


# Accounts are owned by the auth service; only the columns the video
# projection reads are mirrored here.
users = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("username", sa.String(50), unique=True, nullable=False),
    sa.Column("full_name", sa.String(100), nullable=True),
    sa.Column("avatar", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), default=_utcnow),
)

videos = sa.Table(
    "videos",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("title", sa.String(255), nullable=False),
    sa.Column("description", sa.Text, default=""),
    sa.Column("duration", sa.Float, default=0),  # seconds
    sa.Column("source_width", sa.Integer, nullable=True),
    sa.Column("source_height", sa.Integer, nullable=True),
    sa.Column("is_short", sa.Boolean, nullable=False, default=False),
    sa.Column("aspect_ratio", sa.String(10), nullable=True),
    # Media references (url + public id pairs, both set or both NULL)
    sa.Column("video_file", sa.Text, nullable=True),
    sa.Column("video_public_id", sa.String(255), nullable=True),
    sa.Column("thumbnail", sa.Text, nullable=True),
    sa.Column("thumbnail_public_id", sa.String(255), nullable=True),
    # Playback derivation state
    sa.Column("playback_url", sa.Text, nullable=True),
    sa.Column("master_playlist_url", sa.Text, nullable=True),
    sa.Column("available_qualities", sa.Text, nullable=True),  # comma-separated labels, ordered
    # Processing state
    sa.Column(
        "processing_status",
        sa.String(20),
        sa.CheckConstraint(
            "processing_status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'CANCELLED')",
            name="ck_videos_processing_status"
        ),
        nullable=False,
        default="PENDING"
    ),
    sa.Column("processing_progress", sa.Integer, nullable=False, default=0),
    sa.Column("processing_step", sa.String(50), nullable=True),
    sa.Column("processing_error", sa.Text, nullable=True),
    sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("processing_completed_at", sa.DateTime(timezone=True), nullable=True),
    # Publication state
    sa.Column("is_published", sa.Boolean, nullable=False, default=False),
    sa.Column("is_hls_ready", sa.Boolean, nullable=False, default=False),
    # Soft delete
    sa.Column("is_deleted", sa.Boolean, nullable=False, default=False),
    sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("views", sa.Integer, nullable=False, default=0),
    sa.Column("created_at", sa.DateTime(timezone=True), default=_utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow),
    sa.Index("ix_videos_owner_id", "owner_id"),
    sa.Index("ix_videos_processing_status", "processing_status"),
    sa.Index("ix_videos_deleted", "is_deleted", "deleted_at"),
)

# Append-only, one row per successful processing run
video_analytics_snapshots = sa.Table(
    "video_analytics_snapshots",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
    sa.Column("views", sa.Integer, nullable=False, default=0),
    sa.Column("likes", sa.Integer, nullable=False, default=0),
    sa.Column("comments", sa.Integer, nullable=False, default=0),
    sa.Column("shares", sa.Integer, nullable=False, default=0),
    sa.Column("watch_time_seconds", sa.Integer, nullable=False, default=0),
    sa.Column("snapshot_date", sa.DateTime(timezone=True), nullable=False),
    sa.Index("ix_video_analytics_snapshots_video_id", "video_id"),
)

tags = sa.Table(
    "tags",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.String(50), unique=True, nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), default=_utcnow),
)

# Many-to-many relationship between videos and tags
video_tags = sa.Table(
    "video_tags",
    metadata,
    sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
    sa.Column("tag_id", sa.String(36), sa.ForeignKey("tags.id", ondelete="CASCADE"), nullable=False),
    sa.PrimaryKeyConstraint("video_id", "tag_id"),
    sa.Index("ix_video_tags_video_id", "video_id"),
)

likes = sa.Table(
    "likes",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), default=_utcnow),
    sa.UniqueConstraint("video_id", "user_id", name="uq_likes_video_user"),
)

subscriptions = sa.Table(
    "subscriptions",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("subscriber_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("channel_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), default=_utcnow),
    sa.UniqueConstraint("subscriber_id", "channel_id", name="uq_subscriptions_pair"),
)

transcripts = sa.Table(
    "transcripts",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), unique=True, nullable=False),
    sa.Column("language", sa.String(10), nullable=True),
    sa.Column("word_count", sa.Integer, nullable=False, default=0),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow),
)


def create_tables(database_url: str = DATABASE_URL):
    """
    Create database tables directly using SQLAlchemy metadata.
    This creates all tables if they don't exist.
    """
    engine = sa.create_engine(database_url)
    metadata.create_all(engine)
    engine.dispose()


if __name__ == "__main__":
    create_tables()
    print("Database tables created successfully!")
