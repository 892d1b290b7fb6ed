"""Request/response models for video endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from pawfeed.models.video import UserRole, VideoStatus
from pawfeed.pagination import PaginationMeta


class UploadUrlRequest(BaseModel):
    """Request to create a video and get a presigned upload URL."""
    title: str = Field(..., description="Video title (1-100 characters)")
    description: Optional[str] = Field(None, description="Video description (up to 1000 characters)")
    tags: Optional[List[str]] = Field(None, description="Hashtags, with or without '#'")


class UploadUrlResponse(BaseModel):
    """Presigned upload URL for the raw video."""
    video_id: str
    upload_url: str
    storage_key: str
    expires_in: int = Field(..., description="URL expiration in seconds")


class UploadCompleteResponse(BaseModel):
    accepted: bool
    video_id: str
    status: VideoStatus


class UploaderRef(BaseModel):
    user_id: str
    role: UserRole


class VideoSummary(BaseModel):
    """Feed list item."""
    video_id: str
    title: str
    status: VideoStatus
    thumbnail_url: Optional[str] = None
    duration: int
    view_count: int
    like_count: int
    comment_count: int
    is_public: bool
    tags: List[str] = []
    uploader: UploaderRef
    failure_reason: Optional[str] = None
    created_at: datetime


class VideoMeta(BaseModel):
    """Full video metadata; play_url is only set for ready videos."""
    video_id: str
    title: str
    description: Optional[str] = None
    status: VideoStatus
    play_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration: int
    width: Optional[int] = None
    height: Optional[int] = None
    view_count: int
    like_count: int
    comment_count: int
    is_public: bool
    tags: List[str] = []
    uploader: UploaderRef
    failure_reason: Optional[str] = None
    created_at: datetime


class VideoPage(BaseModel):
    items: List[VideoSummary]
    pagination: PaginationMeta


class VisibilityResponse(BaseModel):
    video_id: str
    is_public: bool


class ViewCountResponse(BaseModel):
    counted: bool


class PrefetchReport(BaseModel):
    """Per-call prefetch result; failures are counted, never raised."""
    video_id: str
    resolutions: List[int]
    warmed: int = 0
    already_cached: int = 0
    failed: int = 0
