"""Video model."""

import enum
from datetime import datetime, timezone
from uuid import uuid4
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TIMESTAMP,
    Uuid,
)
from sqlalchemy.orm import relationship
from pawfeed.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoStatus(str, enum.Enum):
    """Video processing state.

    uploading -> processing -> ready | failed
    """
    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class UserRole(str, enum.Enum):
    """Marketplace role of an uploader, liker or comment author."""
    BREEDER = "breeder"
    ADOPTER = "adopter"


def _enum_values(obj):
    return [e.value for e in obj]


class Video(Base):
    """Feed video model."""

    __tablename__ = "videos"

    video_id = Column(Uuid, primary_key=True, default=uuid4)
    uploader_id = Column(String(64), nullable=False)
    uploader_role = Column(
        Enum(UserRole, name="user_role", values_callable=_enum_values),
        nullable=False,
    )
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        Enum(VideoStatus, name="video_status", values_callable=_enum_values),
        nullable=False,
        default=VideoStatus.UPLOADING,
        index=True,
    )
    raw_key = Column(String(512), nullable=False)
    hls_key = Column(String(512), nullable=True)  # videos/hls/{video_id}/master.m3u8
    thumbnail_key = Column(String(512), nullable=True)
    duration = Column(Integer, nullable=False, default=0, server_default="0")
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    view_count = Column(Integer, nullable=False, default=0, server_default="0")
    like_count = Column(Integer, nullable=False, default=0, server_default="0")
    comment_count = Column(Integer, nullable=False, default=0, server_default="0")
    is_public = Column(Boolean, nullable=False, default=True, server_default="true")
    failure_reason = Column(Text, nullable=True)
    encode_lease_until = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    tag_rows = relationship(
        "VideoTag",
        back_populates="video",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="VideoTag.position",
    )

    __table_args__ = (
        Index("idx_videos_feed", "status", "is_public", "created_at"),
        Index("idx_videos_uploader_created", "uploader_id", "created_at"),
        Index("idx_videos_view_count", "view_count"),
        CheckConstraint("like_count >= 0", name="ck_videos_like_count_non_negative"),
        CheckConstraint("comment_count >= 0", name="ck_videos_comment_count_non_negative"),
    )

    @property
    def tags(self) -> list[str]:
        return [row.tag for row in self.tag_rows]

    def __repr__(self):
        return f"<Video(video_id={self.video_id}, status={self.status})>"


class VideoTag(Base):
    """Normalized hashtag attached to a video."""

    __tablename__ = "video_tags"

    video_id = Column(Uuid, ForeignKey("videos.video_id", ondelete="CASCADE"), primary_key=True)
    tag = Column(String(64), primary_key=True, index=True)
    position = Column(Integer, nullable=False, default=0)

    video = relationship("Video", back_populates="tag_rows")

    def __repr__(self):
        return f"<VideoTag(video_id={self.video_id}, tag={self.tag})>"
