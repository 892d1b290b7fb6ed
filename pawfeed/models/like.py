"""Video like model."""

from uuid import uuid4
from sqlalchemy import Column, Enum, ForeignKey, Index, String, TIMESTAMP, UniqueConstraint, Uuid
from pawfeed.db import Base
from pawfeed.models.video import UserRole, _enum_values, utcnow


class VideoLike(Base):
    """One row per (video, user); presence means the user likes the video."""

    __tablename__ = "video_likes"

    like_id = Column(Uuid, primary_key=True, default=uuid4)
    video_id = Column(Uuid, ForeignKey("videos.video_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    user_role = Column(
        Enum(UserRole, name="user_role", values_callable=_enum_values),
        nullable=False,
    )
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("video_id", "user_id", name="uq_video_likes_video_user"),
        Index("idx_video_likes_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<VideoLike(video_id={self.video_id}, user_id={self.user_id})>"
