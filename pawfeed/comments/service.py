"""Comment creation, listing and author-only edits.

Replies are one level deep: a reply's parent must be a live top-level comment
on the same video. Deletes are soft and ``videos.comment_count`` is decremented
exactly once per deleted comment.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pawfeed.cache import Cache, invalidate, video_comments_key, video_meta_key
from pawfeed.comments.schemas import (
    CommentAuthor,
    CommentCreatedResponse,
    CommentDeletedResponse,
    CommentItem,
    CommentPage,
    CommentUpdatedResponse,
)
from pawfeed.config import settings
from pawfeed.errors import ForbiddenError, NotFoundError, ValidationError
from pawfeed.likes.service import visible_video_filter
from pawfeed.logging_config import logger
from pawfeed.models import UserRole, Video, VideoComment
from pawfeed.models.video import utcnow
from pawfeed.pagination import build_pagination, clamp_page, offset_for


def parse_comment_id(raw: Optional[str]) -> Optional[UUID]:
    if raw is None:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        raise ValidationError("Invalid comment id")


class CommentService:
    """Comments on feed videos."""

    def __init__(self, db: AsyncSession, cache: Cache):
        self.db = db
        self.cache = cache

    def _validate_content(self, content: Optional[str]) -> str:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment cannot be empty")
        if len(content) > settings.comment_max_length:
            raise ValidationError(f"Comment exceeds {settings.comment_max_length} characters")
        return content

    async def _ensure_visible_video(self, video_id: UUID, viewer_id: Optional[str]):
        found = await self.db.scalar(
            select(Video.video_id).where(Video.video_id == video_id, visible_video_filter(viewer_id))
        )
        if found is None:
            raise NotFoundError("Video not found")

    async def _get_live_comment(self, comment_id: UUID) -> VideoComment:
        comment = await self.db.get(VideoComment, comment_id, populate_existing=True)
        if comment is None or comment.is_deleted:
            raise NotFoundError("Comment not found")
        return comment

    async def _invalidate(self, video_id: UUID):
        await invalidate(self.cache, video_meta_key(video_id), video_comments_key(video_id))

    async def create_comment(
        self,
        video_id: UUID,
        user_id: str,
        user_role: UserRole,
        content: str,
        parent_id: Optional[UUID] = None,
    ) -> CommentCreatedResponse:
        """
        Add a comment or a reply to a top-level comment.

        Args:
            video_id: Video being commented on
            user_id: Author id
            user_role: Author's marketplace role
            content: 1-500 characters
            parent_id: Top-level comment on the same video, for replies

        Returns:
            The created comment

        Raises:
            ValidationError: Bad content, or parent is missing/on another video/itself a reply
            NotFoundError: Video is absent or not visible to the author
        """
        content = self._validate_content(content)
        await self._ensure_visible_video(video_id, user_id)

        if parent_id is not None:
            parent = await self.db.get(VideoComment, parent_id, populate_existing=True)
            if parent is None or parent.is_deleted or parent.video_id != video_id:
                raise ValidationError("Parent comment not found")
            if parent.parent_id is not None:
                raise ValidationError("Replies to replies are not allowed")

        comment = VideoComment(
            video_id=video_id,
            user_id=user_id,
            user_role=user_role,
            content=content,
            parent_id=parent_id,
        )
        self.db.add(comment)
        await self.db.execute(
            update(Video)
            .where(Video.video_id == video_id)
            .values(comment_count=Video.comment_count + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self._invalidate(video_id)

        logger.info(
            "Created comment",
            comment_id=str(comment.comment_id),
            video_id=str(video_id),
            parent_id=str(parent_id) if parent_id else None,
        )
        return CommentCreatedResponse(
            comment_id=str(comment.comment_id),
            parent_id=str(parent_id) if parent_id else None,
            content=comment.content,
            created_at=comment.created_at,
        )

    def _item(self, comment: VideoComment, viewer_id: Optional[str], reply_count: Optional[int] = None) -> CommentItem:
        return CommentItem(
            comment_id=str(comment.comment_id),
            content=comment.content,
            author=CommentAuthor(user_id=comment.user_id, role=comment.user_role),
            like_count=comment.like_count,
            reply_count=reply_count,
            is_owner=viewer_id is not None and comment.user_id == viewer_id,
            created_at=comment.created_at,
            updated_at=comment.updated_at,
        )

    async def get_comments(
        self,
        video_id: UUID,
        viewer_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> CommentPage:
        """
        Top-level comments, newest first, each with its live reply count.

        Raises:
            NotFoundError: Video is absent or not visible to the viewer
        """
        await self._ensure_visible_video(video_id, viewer_id)
        page, limit = clamp_page(page, limit)

        where = [
            VideoComment.video_id == video_id,
            VideoComment.parent_id.is_(None),
            VideoComment.is_deleted.is_(False),
        ]
        total = await self.db.scalar(select(func.count(VideoComment.comment_id)).where(*where)) or 0
        result = await self.db.execute(
            select(VideoComment)
            .where(*where)
            .order_by(VideoComment.created_at.desc(), VideoComment.comment_id.desc())
            .offset(offset_for(page, limit))
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        comments = result.scalars().all()

        reply_counts = {}
        if comments:
            counts = await self.db.execute(
                select(VideoComment.parent_id, func.count(VideoComment.comment_id))
                .where(
                    VideoComment.parent_id.in_([c.comment_id for c in comments]),
                    VideoComment.is_deleted.is_(False),
                )
                .group_by(VideoComment.parent_id)
            )
            reply_counts = {parent_id: count for parent_id, count in counts.all()}

        return CommentPage(
            items=[self._item(c, viewer_id, reply_counts.get(c.comment_id, 0)) for c in comments],
            pagination=build_pagination(page, limit, total),
        )

    async def get_replies(
        self,
        comment_id: UUID,
        viewer_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> CommentPage:
        """
        Replies to a top-level comment, oldest first.

        Raises:
            NotFoundError: Parent comment is absent/deleted or its video is not visible
        """
        parent = await self._get_live_comment(comment_id)
        await self._ensure_visible_video(parent.video_id, viewer_id)
        page, limit = clamp_page(page, limit)

        where = [VideoComment.parent_id == comment_id, VideoComment.is_deleted.is_(False)]
        total = await self.db.scalar(select(func.count(VideoComment.comment_id)).where(*where)) or 0
        result = await self.db.execute(
            select(VideoComment)
            .where(*where)
            .order_by(VideoComment.created_at.asc(), VideoComment.comment_id.asc())
            .offset(offset_for(page, limit))
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        return CommentPage(
            items=[self._item(c, viewer_id) for c in result.scalars().all()],
            pagination=build_pagination(page, limit, total),
        )

    async def update_comment(self, comment_id: UUID, user_id: str, content: str) -> CommentUpdatedResponse:
        """
        Replace the text of the caller's own comment.

        Raises:
            ValidationError: Bad content
            NotFoundError: Comment is absent or deleted
            ForbiddenError: Caller is not the author
        """
        content = self._validate_content(content)
        comment = await self._get_live_comment(comment_id)
        if comment.user_id != user_id:
            raise ForbiddenError("Only the author can edit this comment")

        comment.content = content
        comment.updated_at = utcnow()
        await self.db.commit()
        await self._invalidate(comment.video_id)

        logger.info("Updated comment", comment_id=str(comment_id))
        return CommentUpdatedResponse(
            comment_id=str(comment.comment_id),
            content=comment.content,
            updated_at=comment.updated_at,
        )

    async def delete_comment(self, comment_id: UUID, user_id: str) -> CommentDeletedResponse:
        """
        Soft-delete the caller's own comment and decrement the video's counter once.

        Raises:
            NotFoundError: Comment is absent or already deleted
            ForbiddenError: Caller is not the author
        """
        comment = await self._get_live_comment(comment_id)
        if comment.user_id != user_id:
            raise ForbiddenError("Only the author can delete this comment")
        video_id = comment.video_id

        result = await self.db.execute(
            update(VideoComment)
            .where(VideoComment.comment_id == comment_id, VideoComment.is_deleted.is_(False))
            .values(is_deleted=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Lost the race against another delete of the same comment
            await self.db.rollback()
            raise NotFoundError("Comment not found")

        await self.db.execute(
            update(Video)
            .where(Video.video_id == video_id)
            .values(
                comment_count=case(
                    (Video.comment_count > 0, Video.comment_count - 1),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self._invalidate(video_id)

        logger.info("Deleted comment", comment_id=str(comment_id), video_id=str(video_id))
        return CommentDeletedResponse(success=True)
