from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_TAGS = 20


class ApiResponse(BaseModel):
    """Envelope for every successful response."""

    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(..., alias="statusCode")
    data: Any = None
    message: str = "Success"
    success: bool = True

    @classmethod
    def of(cls, status_code: int, data: Any, message: str = "Success") -> dict:
        return cls(statusCode=status_code, data=data, message=message, success=status_code < 400).model_dump(
            by_alias=True, mode="json"
        )


class PublishVideoRequest(BaseModel):
    """Finalize a direct upload: the client names the assets it uploaded."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    video_public_id: str = Field(..., min_length=1, max_length=255, alias="videoPublicId")
    thumbnail_public_id: Optional[str] = Field(default=None, max_length=255, alias="thumbnailPublicId")
    duration: Optional[float] = Field(default=None, ge=0)
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    tags: List[str] = Field(default_factory=list)
    is_short: bool = Field(default=False, alias="isShort")

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("thumbnail_public_id", mode="before")
    @classmethod
    def empty_thumbnail_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("tags must be a list")
        tags = [str(tag).strip().lower() for tag in v if str(tag).strip()]
        if len(tags) > MAX_TAGS:
            raise ValueError(f"at most {MAX_TAGS} tags allowed")
        return tags

    @field_validator("is_short", mode="before")
    @classmethod
    def strict_bool(cls, v):
        if v is None:
            return False
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered == "true":
                return True
            if lowered == "false":
                return False
            raise ValueError("isShort must be true or false")
        raise ValueError("isShort must be boolean")


class ProcessingStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    processing_status: str = Field(..., alias="processingStatus")
    processing_progress: int = Field(..., alias="processingProgress")
    processing_step: Optional[str] = Field(default=None, alias="processingStep")
    processing_error: Optional[str] = Field(default=None, alias="processingError")
    processing_started_at: Optional[datetime] = Field(default=None, alias="processingStartedAt")
    processing_completed_at: Optional[datetime] = Field(default=None, alias="processingCompletedAt")
    is_hls_ready: bool = Field(..., alias="isHlsReady")
    is_published: bool = Field(..., alias="isPublished")


class HealthResponse(BaseModel):
    status: str
    database: bool
    redis: Optional[bool] = None
    queue: Optional[dict] = None
    cache: Optional[dict] = None
    worker: Optional[str] = None
