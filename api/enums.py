"""
Centralized enums for status values used throughout the application.
Using str-based enums for database compatibility.
"""

from enum import Enum


class ProcessingStatus(str, Enum):
    """Processing lifecycle of a video."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ProcessingStep(str, Enum):
    """Checkpoint labels written to videos.processing_step."""

    BACKGROUND_TASKS = "BACKGROUND_TASKS"
    THUMBNAIL = "THUMBNAIL"
    FALLBACK_PROCESSING = "FALLBACK_PROCESSING"
    DONE = "DONE"


class JobState(str, Enum):
    """States a queued processing job moves through."""

    WAITING = "waiting"
    DELAYED = "delayed"  # waiting for a retry backoff to elapse
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPriority(str, Enum):
    """Queue priority levels, checked high -> normal -> low."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class QueueEventType(str, Enum):
    """Lifecycle events emitted by the job queue."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class AssetKind(str, Enum):
    """Asset store resource types."""

    IMAGE = "image"
    VIDEO = "video"
    RAW = "raw"


class CheckpointResult(str, Enum):
    """Outcome of a worker cancellation checkpoint."""

    CONTINUE = "continue"
    CANCELLED = "cancelled"
    GONE = "gone"  # video row deleted mid-processing
