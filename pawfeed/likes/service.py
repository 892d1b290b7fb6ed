"""Like toggling and liked-video listings.

The ``video_likes`` row is the source of truth for "liked"; ``videos.like_count``
moves in the same transaction as the row insert/delete.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pawfeed.cache import Cache, invalidate, video_meta_key
from pawfeed.errors import NotFoundError
from pawfeed.likes.schemas import LikeStatusResponse, LikeToggleResponse
from pawfeed.logging_config import logger
from pawfeed.models import UserRole, Video, VideoLike, VideoStatus
from pawfeed.pagination import build_pagination, clamp_page, offset_for
from pawfeed.storage import StorageClient
from pawfeed.video.presenter import VideoPresenter
from pawfeed.video.schemas import VideoPage


def visible_video_filter(viewer_id: Optional[str]):
    """Ready videos that are public or owned by ``viewer_id``."""
    if viewer_id is None:
        return and_(Video.status == VideoStatus.READY, Video.is_public.is_(True))
    return and_(
        Video.status == VideoStatus.READY,
        or_(Video.is_public.is_(True), Video.uploader_id == viewer_id),
    )


class LikeService:
    """Likes on feed videos."""

    def __init__(self, db: AsyncSession, storage: StorageClient, cache: Cache):
        self.db = db
        self.cache = cache
        self.presenter = VideoPresenter(storage, cache)

    async def _like_count(self, video_id: UUID) -> int:
        return await self.db.scalar(select(Video.like_count).where(Video.video_id == video_id)) or 0

    async def toggle_like(self, video_id: UUID, user_id: str, user_role: UserRole) -> LikeToggleResponse:
        """
        Like the video if the user has not, otherwise remove the like.

        Args:
            video_id: Video to like
            user_id: Caller id
            user_role: Caller's marketplace role

        Returns:
            Resulting like state and the stored like count

        Raises:
            NotFoundError: Video is absent or not visible to the caller
        """
        visible = await self.db.scalar(
            select(Video.video_id).where(Video.video_id == video_id, visible_video_filter(user_id))
        )
        if visible is None:
            raise NotFoundError("Video not found")

        removed = await self.db.execute(
            delete(VideoLike)
            .where(VideoLike.video_id == video_id, VideoLike.user_id == user_id)
            .execution_options(synchronize_session=False)
        )

        if removed.rowcount:
            await self.db.execute(
                update(Video)
                .where(Video.video_id == video_id)
                .values(
                    like_count=case(
                        (Video.like_count > removed.rowcount, Video.like_count - removed.rowcount),
                        else_=0,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            is_liked = False
        else:
            self.db.add(VideoLike(video_id=video_id, user_id=user_id, user_role=user_role))
            try:
                await self.db.flush()
            except IntegrityError:
                # A concurrent request of the same user inserted first
                await self.db.rollback()
                logger.info("Like already recorded", video_id=str(video_id), user_id=user_id)
                is_liked = True
            else:
                await self.db.execute(
                    update(Video)
                    .where(Video.video_id == video_id)
                    .values(like_count=Video.like_count + 1)
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
                is_liked = True

        await invalidate(self.cache, video_meta_key(video_id))
        like_count = await self._like_count(video_id)

        logger.info("Toggled like", video_id=str(video_id), user_id=user_id, is_liked=is_liked)
        return LikeToggleResponse(is_liked=is_liked, like_count=like_count)

    async def get_like_status(self, video_id: UUID, user_id: str) -> LikeStatusResponse:
        """
        Whether the user likes the video, plus its like count.

        Raises:
            NotFoundError: Video is absent or not visible to the caller
        """
        like_count = await self.db.scalar(
            select(Video.like_count).where(Video.video_id == video_id, visible_video_filter(user_id))
        )
        if like_count is None:
            raise NotFoundError("Video not found")

        like_id = await self.db.scalar(
            select(VideoLike.like_id).where(VideoLike.video_id == video_id, VideoLike.user_id == user_id)
        )
        return LikeStatusResponse(is_liked=like_id is not None, like_count=like_count)

    async def get_my_liked_videos(self, user_id: str, page: int = 1, limit: int = 20) -> VideoPage:
        """Ready videos the user liked, most recently liked first."""
        page, limit = clamp_page(page, limit)
        where = [VideoLike.user_id == user_id, visible_video_filter(user_id)]

        total = await self.db.scalar(
            select(func.count(VideoLike.like_id))
            .join(Video, Video.video_id == VideoLike.video_id)
            .where(*where)
        ) or 0

        result = await self.db.execute(
            select(Video)
            .join(VideoLike, VideoLike.video_id == Video.video_id)
            .where(*where)
            .order_by(VideoLike.created_at.desc(), VideoLike.like_id.desc())
            .offset(offset_for(page, limit))
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        videos = result.scalars().all()

        return VideoPage(
            items=[await self.presenter.summary(v) for v in videos],
            pagination=build_pagination(page, limit, total),
        )
