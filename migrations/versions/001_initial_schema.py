"""initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Videos, their processing state and the read-only relations the watch page
projects (owners, tags, likes, subscriptions, transcripts).
For databases created with create_tables(), use 'alembic stamp 001'.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables for the Vixora database."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("username", sa.String(50), unique=True, nullable=False),
        sa.Column("full_name", sa.String(100), nullable=True),
        sa.Column("avatar", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "videos",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("duration", sa.Float, server_default="0"),
        sa.Column("source_width", sa.Integer, nullable=True),
        sa.Column("source_height", sa.Integer, nullable=True),
        sa.Column("is_short", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("aspect_ratio", sa.String(10), nullable=True),
        sa.Column("video_file", sa.Text, nullable=True),
        sa.Column("video_public_id", sa.String(255), nullable=True),
        sa.Column("thumbnail", sa.Text, nullable=True),
        sa.Column("thumbnail_public_id", sa.String(255), nullable=True),
        sa.Column("playback_url", sa.Text, nullable=True),
        sa.Column("master_playlist_url", sa.Text, nullable=True),
        sa.Column("available_qualities", sa.Text, nullable=True),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("processing_progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processing_step", sa.String(50), nullable=True),
        sa.Column("processing_error", sa.Text, nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_published", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_hls_ready", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("views", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "processing_status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'CANCELLED')",
            name="ck_videos_processing_status",
        ),
    )
    op.create_index("ix_videos_owner_id", "videos", ["owner_id"])
    op.create_index("ix_videos_processing_status", "videos", ["processing_status"])
    op.create_index("ix_videos_deleted", "videos", ["is_deleted", "deleted_at"])

    op.create_table(
        "video_analytics_snapshots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
        sa.Column("views", sa.Integer, nullable=False, server_default="0"),
        sa.Column("likes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("comments", sa.Integer, nullable=False, server_default="0"),
        sa.Column("shares", sa.Integer, nullable=False, server_default="0"),
        sa.Column("watch_time_seconds", sa.Integer, nullable=False, server_default="0"),
        sa.Column("snapshot_date", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_video_analytics_snapshots_video_id", "video_analytics_snapshots", ["video_id"])

    op.create_table(
        "tags",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(50), unique=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "video_tags",
        sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tag_id", sa.String(36), sa.ForeignKey("tags.id", ondelete="CASCADE"), nullable=False),
        sa.PrimaryKeyConstraint("video_id", "tag_id"),
    )
    op.create_index("ix_video_tags_video_id", "video_tags", ["video_id"])

    op.create_table(
        "likes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("video_id", "user_id", name="uq_likes_video_user"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subscriber_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("channel_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("subscriber_id", "channel_id", name="uq_subscriptions_pair"),
    )

    op.create_table(
        "transcripts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), unique=True, nullable=False
        ),
        sa.Column("language", sa.String(10), nullable=True),
        sa.Column("word_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )


def downgrade() -> None:
    """Drop all tables (dependents first)."""
    for table in (
        "transcripts",
        "subscriptions",
        "likes",
        "video_tags",
        "tags",
        "video_analytics_snapshots",
        "videos",
        "users",
    ):
        op.drop_table(table)
