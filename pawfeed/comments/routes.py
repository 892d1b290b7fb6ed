"""Comment routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from pawfeed.auth.middleware import AuthUser, get_current_user, get_current_user_optional
from pawfeed.comments.schemas import (
    CommentCreateRequest,
    CommentCreatedResponse,
    CommentDeletedResponse,
    CommentPage,
    CommentUpdateRequest,
    CommentUpdatedResponse,
)
from pawfeed.comments.service import CommentService, parse_comment_id
from pawfeed.dependencies import get_comment_service
from pawfeed.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()


@router.post("/{video_id}", response_model=CommentCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_comment(
    video_id: UUID,
    body: CommentCreateRequest,
    user: AuthUser = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
) -> CommentCreatedResponse:
    """Comment on a video, or reply to a top-level comment with ``parent_id``."""
    return await service.create_comment(
        video_id,
        user.user_id,
        user.role,
        body.content,
        parent_id=parse_comment_id(body.parent_id),
    )


@router.get("/{video_id}", response_model=CommentPage)
async def get_comments(
    video_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: AuthUser = Depends(get_current_user_optional),
    service: CommentService = Depends(get_comment_service),
) -> CommentPage:
    """Top-level comments, newest first."""
    return await service.get_comments(video_id, user.user_id if user else None, page, limit)


@router.get("/{comment_id}/replies", response_model=CommentPage)
async def get_replies(
    comment_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: AuthUser = Depends(get_current_user_optional),
    service: CommentService = Depends(get_comment_service),
) -> CommentPage:
    """Replies to a comment, oldest first."""
    return await service.get_replies(comment_id, user.user_id if user else None, page, limit)


@router.patch("/{comment_id}", response_model=CommentUpdatedResponse)
async def update_comment(
    comment_id: UUID,
    body: CommentUpdateRequest,
    user: AuthUser = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
) -> CommentUpdatedResponse:
    """Edit one of the caller's comments."""
    return await service.update_comment(comment_id, user.user_id, body.content)


@router.delete("/{comment_id}", response_model=CommentDeletedResponse)
async def delete_comment(
    comment_id: UUID,
    user: AuthUser = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
) -> CommentDeletedResponse:
    """Delete one of the caller's comments."""
    return await service.delete_comment(comment_id, user.user_id)
