"""SQLAlchemy ORM models for the video feed."""

from pawfeed.db import Base
from pawfeed.models.video import Video, VideoStatus, VideoTag, UserRole
from pawfeed.models.like import VideoLike
from pawfeed.models.comment import VideoComment

__all__ = [
    "Base",
    "Video",
    "VideoStatus",
    "VideoTag",
    "UserRole",
    "VideoLike",
    "VideoComment",
]
