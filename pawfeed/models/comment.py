"""Video comment model."""

from uuid import uuid4
from sqlalchemy import Boolean, Column, Enum, ForeignKey, Index, Integer, String, TIMESTAMP, Uuid
from pawfeed.db import Base
from pawfeed.models.video import UserRole, _enum_values, utcnow


class VideoComment(Base):
    """Comment on a video; replies point at a top-level comment via parent_id."""

    __tablename__ = "video_comments"

    comment_id = Column(Uuid, primary_key=True, default=uuid4)
    video_id = Column(Uuid, ForeignKey("videos.video_id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), nullable=False, index=True)
    user_role = Column(
        Enum(UserRole, name="user_role", values_callable=_enum_values),
        nullable=False,
    )
    content = Column(String(500), nullable=False)
    parent_id = Column(
        Uuid,
        ForeignKey("video_comments.comment_id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    like_count = Column(Integer, nullable=False, default=0, server_default="0")
    is_deleted = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_video_comments_video_created", "video_id", "created_at"),
    )

    def __repr__(self):
        return f"<VideoComment(comment_id={self.comment_id}, video_id={self.video_id})>"
