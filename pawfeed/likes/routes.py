"""Like routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from pawfeed.auth.middleware import AuthUser, get_current_user
from pawfeed.dependencies import get_like_service
from pawfeed.likes.schemas import LikeStatusResponse, LikeToggleResponse
from pawfeed.likes.service import LikeService
from pawfeed.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from pawfeed.video.schemas import VideoPage

router = APIRouter()


@router.get("/my/list", response_model=VideoPage)
async def get_my_liked_videos(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: AuthUser = Depends(get_current_user),
    service: LikeService = Depends(get_like_service),
) -> VideoPage:
    """Videos the caller liked, most recent first."""
    return await service.get_my_liked_videos(user.user_id, page, limit)


@router.post("/{video_id}", response_model=LikeToggleResponse)
async def toggle_like(
    video_id: UUID,
    user: AuthUser = Depends(get_current_user),
    service: LikeService = Depends(get_like_service),
) -> LikeToggleResponse:
    """Like or unlike a video."""
    return await service.toggle_like(video_id, user.user_id, user.role)


@router.get("/{video_id}/status", response_model=LikeStatusResponse)
async def get_like_status(
    video_id: UUID,
    user: AuthUser = Depends(get_current_user),
    service: LikeService = Depends(get_like_service),
) -> LikeStatusResponse:
    """Whether the caller likes the video."""
    return await service.get_like_status(video_id, user.user_id)
