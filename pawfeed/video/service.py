"""
Video lifecycle service.

Owns every request-path transition of a Video:
- create in ``uploading`` with a presigned upload URL
- ``uploading -> processing`` and the encode job hand-off
- owner delete and visibility toggle

plus metadata reads, feed listings, view counting and the HLS proxy/prefetch
used by web players.
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pawfeed.best_effort import BestEffort, best_effort
from pawfeed.cache import (
    Cache,
    hls_file_key,
    invalidate,
    read_json,
    video_comments_key,
    video_meta_key,
    write_json,
)
from pawfeed.config import settings
from pawfeed.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from pawfeed.logging_config import logger
from pawfeed.media.engine import resolutions_for_source, segment_name
from pawfeed.metrics import hls_proxy_requests_total, prefetch_segments_total
from pawfeed.models import UserRole, Video, VideoComment, VideoLike, VideoStatus, VideoTag
from pawfeed.models.video import utcnow
from pawfeed.pagination import build_pagination, clamp_page, offset_for
from pawfeed.storage import StorageClient, content_type_for
from pawfeed.tags.normalize import normalize_tags
from pawfeed.tasks.video_processor import hls_prefix, thumbnail_key
from pawfeed.video.presenter import VideoPresenter
from pawfeed.video.queue import EncodeQueue
from pawfeed.video.schemas import (
    PrefetchReport,
    UploadCompleteResponse,
    UploadUrlResponse,
    VideoMeta,
    VideoPage,
    VideoSummary,
    VisibilityResponse,
)

HLS_FILENAME_RE = re.compile(r"^[A-Za-z0-9_\-]+\.(m3u8|ts)$")


def raw_key_for(object_id: UUID) -> str:
    return f"videos/raw/{object_id}.mp4"


def is_visible_to(meta: VideoMeta, viewer_id: Optional[str]) -> bool:
    """Ready public videos are visible to everyone, anything else only to its uploader."""
    if viewer_id is not None and meta.uploader.user_id == viewer_id:
        return True
    return meta.status == VideoStatus.READY and meta.is_public


@dataclass(frozen=True)
class HLSFile:
    body: bytes
    content_type: str
    cache_hit: bool


class VideoService:
    """Request-path operations on feed videos."""

    def __init__(self, db: AsyncSession, storage: StorageClient, cache: Cache, queue: EncodeQueue):
        self.db = db
        self.storage = storage
        self.cache = cache
        self.queue = queue
        self.presenter = VideoPresenter(storage, cache)

    async def _get_video(self, video_id: UUID) -> Video:
        video = await self.db.get(Video, video_id, populate_existing=True)
        if video is None:
            raise NotFoundError("Video not found")
        return video

    async def _get_owned_video(self, video_id: UUID, caller_id: str) -> Video:
        video = await self._get_video(video_id)
        if video.uploader_id != caller_id:
            raise ForbiddenError("Only the uploader can modify this video")
        return video

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def issue_upload_url(
        self,
        uploader_id: str,
        uploader_role: UserRole,
        title: str,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> UploadUrlResponse:
        """
        Create a video in ``uploading`` and presign a PUT URL for its raw file.

        Args:
            uploader_id: Caller id
            uploader_role: Caller's marketplace role
            title: 1-100 characters
            description: Up to 1000 characters
            tags: Hashtags; normalized and de-duplicated

        Returns:
            UploadUrlResponse

        Raises:
            ValidationError: If title, description or tags are out of bounds
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if len(title) > settings.video_title_max_length:
            raise ValidationError(f"Title exceeds {settings.video_title_max_length} characters")
        if description is not None and len(description) > settings.video_description_max_length:
            raise ValidationError(
                f"Description exceeds {settings.video_description_max_length} characters"
            )
        normalized_tags = normalize_tags(
            tags,
            max_tags=settings.video_max_tags,
            max_length=settings.video_tag_max_length,
        )

        video_id = uuid4()
        storage_key = raw_key_for(uuid4())
        ttl = settings.upload_url_expire_seconds

        upload_url = await asyncio.to_thread(self.storage.issue_signed_upload_url, storage_key, ttl)

        video = Video(
            video_id=video_id,
            uploader_id=uploader_id,
            uploader_role=uploader_role,
            title=title,
            description=description,
            status=VideoStatus.UPLOADING,
            raw_key=storage_key,
        )
        video.tag_rows = [VideoTag(tag=tag, position=i) for i, tag in enumerate(normalized_tags)]
        self.db.add(video)
        await self.db.commit()

        logger.info(
            "Issued video upload URL",
            video_id=str(video_id),
            uploader_id=uploader_id,
            storage_key=storage_key,
            tags=normalized_tags,
        )

        return UploadUrlResponse(
            video_id=str(video_id),
            upload_url=upload_url,
            storage_key=storage_key,
            expires_in=ttl,
        )

    async def complete_upload(self, video_id: UUID, caller_id: str) -> UploadCompleteResponse:
        """
        Move the video to ``processing`` and enqueue exactly one encode job.

        Concurrent calls race on a conditional update; only the winner enqueues.

        Raises:
            NotFoundError: No such video
            ForbiddenError: Caller is not the uploader
            ConflictError: Video is not in ``uploading``
            TransientIOError: Job could not be queued; the video is back in ``uploading``
        """
        video = await self._get_owned_video(video_id, caller_id)
        if video.status != VideoStatus.UPLOADING:
            raise ConflictError(f"Video is not in uploading state (current state: {video.status.value})")
        raw_key = video.raw_key

        result = await self.db.execute(
            update(Video)
            .where(Video.video_id == video_id, Video.status == VideoStatus.UPLOADING)
            .values(status=VideoStatus.PROCESSING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Upload was already completed")
        await self.db.commit()

        try:
            await self.queue.enqueue(video_id, raw_key)
        except Exception as e:
            logger.error("Encode job not queued, reverting upload completion", video_id=str(video_id), error=str(e))
            await self.db.execute(
                update(Video)
                .where(
                    Video.video_id == video_id,
                    Video.status == VideoStatus.PROCESSING,
                    Video.encode_lease_until.is_(None),
                )
                .values(status=VideoStatus.UPLOADING, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            raise TransientIOError("Could not queue video for encoding, please retry") from e

        await invalidate(self.cache, video_meta_key(video_id))
        logger.info("Video upload completed, queued for encoding", video_id=str(video_id))

        return UploadCompleteResponse(
            accepted=True,
            video_id=str(video_id),
            status=VideoStatus.PROCESSING,
        )

    # ------------------------------------------------------------------
    # Metadata and counters
    # ------------------------------------------------------------------

    async def get_video_meta(self, video_id: UUID, viewer_id: Optional[str] = None) -> VideoMeta:
        """
        Video metadata with a signed master playlist URL when ready.

        Args:
            video_id: Video to read
            viewer_id: Caller id, or None for anonymous viewers

        Returns:
            VideoMeta

        Raises:
            NotFoundError: Video is absent, or private/not ready and the viewer is not the uploader
        """
        cache_key = video_meta_key(video_id)
        cached = await read_json(self.cache, cache_key)
        if cached is not None:
            meta = VideoMeta.model_validate(cached)
        else:
            video = await self._get_video(video_id)
            meta = await self.presenter.meta(video)
            await write_json(
                self.cache,
                cache_key,
                meta.model_dump(mode="json"),
                settings.video_meta_cache_ttl,
            )

        if not is_visible_to(meta, viewer_id):
            raise NotFoundError("Video not found")
        return meta

    async def increment_view_count(self, video_id: UUID) -> BestEffort:
        """Count one view of a ready video. Never raises."""
        return await best_effort(
            "increment_view_count",
            self._increment_view_count(video_id),
            video_id=str(video_id),
        )

    async def _increment_view_count(self, video_id: UUID) -> bool:
        try:
            result = await self.db.execute(
                update(Video)
                .where(Video.video_id == video_id, Video.status == VideoStatus.READY)
                .values(view_count=Video.view_count + 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        counted = result.rowcount == 1
        if counted:
            await invalidate(self.cache, video_meta_key(video_id))
        return counted

    # ------------------------------------------------------------------
    # HLS proxy and prefetch
    # ------------------------------------------------------------------

    async def proxy_hls_file(self, video_id: UUID, filename: str) -> HLSFile:
        """
        Serve a playlist or segment through the API (same-origin for web players).

        Raises:
            ValidationError: Filename is not a plain .m3u8/.ts name
            NotFoundError: Object does not exist
        """
        if not HLS_FILENAME_RE.match(filename or ""):
            raise ValidationError("Only .m3u8 and .ts files can be streamed")

        kind = "playlist" if filename.endswith(".m3u8") else "segment"
        cache_key = hls_file_key(video_id, filename)
        content_type = content_type_for(filename)

        cached = await best_effort("cache_read", self.cache.get(cache_key), key=cache_key)
        if cached.ok and cached.value is not None:
            hls_proxy_requests_total.labels(kind=kind, cache="hit").inc()
            return HLSFile(body=cached.value, content_type=content_type, cache_hit=True)

        body = await asyncio.to_thread(self.storage.get_object, f"{hls_prefix(video_id)}{filename}")
        ttl = settings.hls_playlist_cache_ttl if kind == "playlist" else settings.hls_segment_cache_ttl
        await best_effort("cache_write", self.cache.set(cache_key, body, ttl), key=cache_key)

        hls_proxy_requests_total.labels(kind=kind, cache="miss").inc()
        return HLSFile(body=body, content_type=content_type, cache_hit=False)

    async def prefetch_all_quality_segments(
        self,
        video_id: UUID,
        current_segment: int,
        count: Optional[int] = None,
    ) -> PrefetchReport:
        """
        Warm upcoming segments of every rendition so a quality switch does not stall.

        Args:
            video_id: Video being played
            current_segment: Index of the segment being played
            count: Segments to warm per rendition (default 5, capped)

        Returns:
            PrefetchReport; per-segment failures are counted and logged

        Raises:
            NotFoundError: No such video
        """
        video = await self._get_video(video_id)
        count = min(max(count or settings.prefetch_default_count, 1), settings.prefetch_max_count)

        if video.status != VideoStatus.READY:
            return PrefetchReport(video_id=str(video_id), resolutions=[])

        resolutions = resolutions_for_source(video.height or 0, settings.hls_resolutions)
        return await self._prefetch(video_id, resolutions, max(current_segment, 0), count)

    async def _prefetch(self, video_id: UUID, resolutions: List[int], start: int, count: int) -> PrefetchReport:
        report = PrefetchReport(video_id=str(video_id), resolutions=resolutions)

        for height in resolutions:
            for index in range(start, start + count):
                outcome = await best_effort(
                    "prefetch_segment",
                    self._warm_segment(video_id, segment_name(height, index)),
                    video_id=str(video_id),
                    resolution=height,
                    segment=index,
                )
                if not outcome.ok:
                    report.failed += 1
                elif outcome.value:
                    report.warmed += 1
                else:
                    report.already_cached += 1

        prefetch_segments_total.labels(result="warmed").inc(report.warmed)
        prefetch_segments_total.labels(result="cached").inc(report.already_cached)
        prefetch_segments_total.labels(result="failed").inc(report.failed)
        logger.debug(
            "Prefetched segments",
            video_id=str(video_id),
            start=start,
            count=count,
            warmed=report.warmed,
            already_cached=report.already_cached,
            failed=report.failed,
        )
        return report

    async def _warm_segment(self, video_id: UUID, filename: str) -> bool:
        """Returns True when the segment was fetched, False when already cached."""
        cache_key = hls_file_key(video_id, filename)
        if await self.cache.exists(cache_key):
            return False
        body = await asyncio.to_thread(self.storage.get_object, f"{hls_prefix(video_id)}{filename}")
        await self.cache.set(cache_key, body, settings.hls_segment_cache_ttl)
        return True

    async def preload_initial_segments(self, video_id: UUID, source_height: int) -> BestEffort:
        """
        Warm the first segments of each rendition after a metadata read.

        Runs after the response is sent, so it only touches the cache and storage.
        """
        resolutions = resolutions_for_source(source_height, settings.hls_resolutions)
        return await best_effort(
            "preload_initial_segments",
            self._prefetch(video_id, resolutions, 0, settings.preload_segment_count),
            video_id=str(video_id),
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def _page(self, where, order_by, page: int, limit: int) -> VideoPage:
        page, limit = clamp_page(page, limit)
        total = await self.db.scalar(select(func.count(Video.video_id)).where(*where)) or 0
        result = await self.db.execute(
            select(Video)
            .where(*where)
            .order_by(*order_by)
            .offset(offset_for(page, limit))
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        videos = result.scalars().all()
        return VideoPage(
            items=[await self.presenter.summary(v) for v in videos],
            pagination=build_pagination(page, limit, total),
        )

    async def get_feed(self, page: int = 1, limit: int = 20) -> VideoPage:
        """Ready public videos, newest first."""
        return await self._page(
            [Video.status == VideoStatus.READY, Video.is_public.is_(True)],
            [Video.created_at.desc(), Video.video_id.desc()],
            page,
            limit,
        )

    async def get_popular_videos(self, limit: int = 10) -> List[VideoSummary]:
        """Ready public videos by view count."""
        _, limit = clamp_page(1, limit)
        result = await self.db.execute(
            select(Video)
            .where(Video.status == VideoStatus.READY, Video.is_public.is_(True))
            .order_by(Video.view_count.desc(), Video.created_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [await self.presenter.summary(v) for v in result.scalars().all()]

    async def get_my_videos(self, uploader_id: str, page: int = 1, limit: int = 20) -> VideoPage:
        """All of the uploader's videos in any status, newest first."""
        return await self._page(
            [Video.uploader_id == uploader_id],
            [Video.created_at.desc(), Video.video_id.desc()],
            page,
            limit,
        )

    # ------------------------------------------------------------------
    # Owner mutations
    # ------------------------------------------------------------------

    async def delete_video(self, video_id: UUID, caller_id: str):
        """
        Delete the video row, then its storage objects.

        The row delete is authoritative; storage cleanup failures are logged
        and do not fail the call.

        Raises:
            NotFoundError: No such video
            ForbiddenError: Caller is not the uploader
        """
        video = await self._get_owned_video(video_id, caller_id)
        raw_key = video.raw_key
        thumb_key = video.thumbnail_key or thumbnail_key(video_id)

        await self._delete_rows(video_id)
        await self.db.commit()
        logger.info("Deleted video", video_id=str(video_id), uploader_id=caller_id)

        await best_effort(
            "delete_raw_object",
            asyncio.to_thread(self.storage.delete_object, raw_key),
            video_id=str(video_id),
        )
        await best_effort(
            "delete_hls_prefix",
            asyncio.to_thread(self.storage.delete_prefix, hls_prefix(video_id)),
            video_id=str(video_id),
        )
        await best_effort(
            "delete_thumbnail",
            asyncio.to_thread(self.storage.delete_object, thumb_key),
            video_id=str(video_id),
        )
        await invalidate(self.cache, video_meta_key(video_id), video_comments_key(video_id))

    async def _delete_rows(self, video_id: UUID):
        for stmt in (
            delete(VideoLike).where(VideoLike.video_id == video_id),
            delete(VideoComment).where(VideoComment.video_id == video_id),
            delete(VideoTag).where(VideoTag.video_id == video_id),
            delete(Video).where(Video.video_id == video_id),
        ):
            await self.db.execute(stmt.execution_options(synchronize_session=False))

    async def toggle_visibility(self, video_id: UUID, caller_id: str) -> VisibilityResponse:
        """
        Flip ``is_public``.

        Raises:
            NotFoundError: No such video
            ForbiddenError: Caller is not the uploader
        """
        video = await self._get_owned_video(video_id, caller_id)
        video.is_public = not video.is_public
        await self.db.commit()
        await invalidate(self.cache, video_meta_key(video_id))

        logger.info("Toggled video visibility", video_id=str(video_id), is_public=video.is_public)
        return VisibilityResponse(video_id=str(video_id), is_public=video.is_public)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def sweep_abandoned_uploads(self, older_than: timedelta) -> int:
        """
        Delete videos that stayed in ``uploading`` longer than ``older_than``.

        Returns:
            Number of videos removed
        """
        cutoff = utcnow() - older_than
        result = await self.db.execute(
            select(Video.video_id, Video.raw_key).where(
                Video.status == VideoStatus.UPLOADING,
                Video.created_at < cutoff,
            )
        )
        stale = result.all()

        removed = 0
        for video_id, raw_key in stale:
            await self.db.execute(
                delete(VideoTag)
                .where(VideoTag.video_id == video_id)
                .execution_options(synchronize_session=False)
            )
            # Re-check status so a concurrent upload completion wins
            deleted = await self.db.execute(
                delete(Video)
                .where(Video.video_id == video_id, Video.status == VideoStatus.UPLOADING)
                .execution_options(synchronize_session=False)
            )
            if deleted.rowcount != 1:
                await self.db.rollback()
                continue
            await self.db.commit()
            removed += 1

            await best_effort(
                "delete_raw_object",
                asyncio.to_thread(self.storage.delete_object, raw_key),
                video_id=str(video_id),
            )
            logger.info("Removed abandoned upload", video_id=str(video_id), raw_key=raw_key)

        return removed
