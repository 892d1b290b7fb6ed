"""Video upload, playback and management routes."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status

from pawfeed.auth.middleware import AuthUser, get_current_user, get_current_user_optional
from pawfeed.config import settings
from pawfeed.dependencies import get_video_service
from pawfeed.models.video import VideoStatus
from pawfeed.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from pawfeed.rate_limit import limiter
from pawfeed.video.schemas import (
    PrefetchReport,
    UploadCompleteResponse,
    UploadUrlRequest,
    UploadUrlResponse,
    VideoMeta,
    VideoPage,
    VideoSummary,
    ViewCountResponse,
    VisibilityResponse,
)
from pawfeed.video.service import VideoService

router = APIRouter()

# Browser cache lifetimes for proxied HLS files
SEGMENT_CACHE_CONTROL = "public, max-age=86400"
PLAYLIST_CACHE_CONTROL = "public, max-age=3600"


@router.post("/upload-url", response_model=UploadUrlResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_upload_url)
async def issue_upload_url(
    request: Request,
    body: UploadUrlRequest,
    user: AuthUser = Depends(get_current_user),
    service: VideoService = Depends(get_video_service),
) -> UploadUrlResponse:
    """
    Create a video and get a presigned upload URL.

    The client PUTs the raw file to ``upload_url`` and then calls
    ``POST /videos/{video_id}/upload-complete``.
    """
    return await service.issue_upload_url(
        uploader_id=user.user_id,
        uploader_role=user.role,
        title=body.title,
        description=body.description,
        tags=body.tags,
    )


@router.post(
    "/{video_id}/upload-complete",
    response_model=UploadCompleteResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def complete_upload(
    video_id: UUID,
    user: AuthUser = Depends(get_current_user),
    service: VideoService = Depends(get_video_service),
) -> UploadCompleteResponse:
    """Mark the upload as finished and queue the video for encoding."""
    return await service.complete_upload(video_id, user.user_id)


@router.get("", response_model=VideoPage)
async def get_feed(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    service: VideoService = Depends(get_video_service),
) -> VideoPage:
    """Public feed of ready videos, newest first."""
    return await service.get_feed(page, limit)


@router.get("/popular", response_model=List[VideoSummary])
async def get_popular_videos(
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    service: VideoService = Depends(get_video_service),
) -> List[VideoSummary]:
    """Most viewed ready public videos."""
    return await service.get_popular_videos(limit)


@router.get("/my/list", response_model=VideoPage)
async def get_my_videos(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: AuthUser = Depends(get_current_user),
    service: VideoService = Depends(get_video_service),
) -> VideoPage:
    """The caller's videos in every status, including failed and private ones."""
    return await service.get_my_videos(user.user_id, page, limit)


@router.get("/stream/{video_id}/{filename}")
async def stream_hls_file(
    video_id: UUID,
    filename: str,
    service: VideoService = Depends(get_video_service),
) -> Response:
    """Proxy an HLS playlist or segment from object storage."""
    hls_file = await service.proxy_hls_file(video_id, filename)
    cache_control = PLAYLIST_CACHE_CONTROL if filename.endswith(".m3u8") else SEGMENT_CACHE_CONTROL
    return Response(
        content=hls_file.body,
        media_type=hls_file.content_type,
        headers={
            "X-Cache": "HIT" if hls_file.cache_hit else "MISS",
            "Cache-Control": cache_control,
        },
    )


@router.post("/stream/{video_id}/prefetch", response_model=PrefetchReport)
async def prefetch_segments(
    video_id: UUID,
    segment: int = Query(0, ge=0, description="Index of the segment being played"),
    count: int = Query(settings.prefetch_default_count, ge=1, le=settings.prefetch_max_count),
    service: VideoService = Depends(get_video_service),
) -> PrefetchReport:
    """Warm upcoming segments of every rendition."""
    return await service.prefetch_all_quality_segments(video_id, segment, count)


@router.get("/{video_id}", response_model=VideoMeta)
async def get_video_meta(
    video_id: UUID,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(get_current_user_optional),
    service: VideoService = Depends(get_video_service),
) -> VideoMeta:
    """Video metadata with a signed playback URL once the video is ready."""
    meta = await service.get_video_meta(video_id, viewer_id=user.user_id if user else None)
    if meta.status == VideoStatus.READY:
        background_tasks.add_task(service.preload_initial_segments, video_id, meta.height or 0)
    return meta


@router.post("/{video_id}/view", response_model=ViewCountResponse)
@limiter.limit(settings.rate_limit_view)
async def increment_view(
    request: Request,
    video_id: UUID,
    service: VideoService = Depends(get_video_service),
) -> ViewCountResponse:
    """Count a playback start. Always succeeds."""
    outcome = await service.increment_view_count(video_id)
    return ViewCountResponse(counted=bool(outcome.ok and outcome.value))


@router.delete("/{video_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_video(
    video_id: UUID,
    user: AuthUser = Depends(get_current_user),
    service: VideoService = Depends(get_video_service),
):
    """Delete one of the caller's videos and its stored files."""
    await service.delete_video(video_id, user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{video_id}/visibility", response_model=VisibilityResponse)
async def toggle_visibility(
    video_id: UUID,
    user: AuthUser = Depends(get_current_user),
    service: VideoService = Depends(get_video_service),
) -> VisibilityResponse:
    """Switch one of the caller's videos between public and private."""
    return await service.toggle_visibility(video_id, user.user_id)
