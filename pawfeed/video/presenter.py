"""Turns Video rows into API models with signed playback/thumbnail URLs."""

import asyncio
from typing import Optional

from pawfeed.cache import Cache, read_json, signed_url_key, write_json
from pawfeed.config import settings
from pawfeed.models.video import Video, VideoStatus
from pawfeed.storage import StorageClient
from pawfeed.video.schemas import UploaderRef, VideoMeta, VideoSummary


class VideoPresenter:
    """Builds VideoSummary/VideoMeta, caching signed URLs per object key."""

    def __init__(self, storage: StorageClient, cache: Cache):
        self.storage = storage
        self.cache = cache

    async def signed_url(self, key: Optional[str]) -> Optional[str]:
        """
        Signed GET URL for ``key``, reused from cache until shortly before expiry.

        Args:
            key: Object key, or None

        Returns:
            URL, or None when there is no key
        """
        if not key:
            return None

        cache_key = signed_url_key(key)
        cached = await read_json(self.cache, cache_key)
        if cached:
            return cached

        ttl = settings.playback_url_expire_seconds
        url = await asyncio.to_thread(self.storage.issue_signed_playback_url, key, ttl)
        await write_json(self.cache, cache_key, url, ttl - settings.signed_url_cache_margin_seconds)
        return url

    async def summary(self, video: Video) -> VideoSummary:
        return VideoSummary(
            video_id=str(video.video_id),
            title=video.title,
            status=video.status,
            thumbnail_url=await self.signed_url(video.thumbnail_key),
            duration=video.duration or 0,
            view_count=video.view_count,
            like_count=video.like_count,
            comment_count=video.comment_count,
            is_public=video.is_public,
            tags=video.tags,
            uploader=UploaderRef(user_id=video.uploader_id, role=video.uploader_role),
            failure_reason=video.failure_reason if video.status == VideoStatus.FAILED else None,
            created_at=video.created_at,
        )

    async def meta(self, video: Video) -> VideoMeta:
        ready = video.status == VideoStatus.READY
        return VideoMeta(
            video_id=str(video.video_id),
            title=video.title,
            description=video.description,
            status=video.status,
            play_url=await self.signed_url(video.hls_key) if ready else None,
            thumbnail_url=await self.signed_url(video.thumbnail_key) if ready else None,
            duration=video.duration or 0,
            width=video.width,
            height=video.height,
            view_count=video.view_count,
            like_count=video.like_count,
            comment_count=video.comment_count,
            is_public=video.is_public,
            tags=video.tags,
            uploader=UploaderRef(user_id=video.uploader_id, role=video.uploader_role),
            failure_reason=video.failure_reason if video.status == VideoStatus.FAILED else None,
            created_at=video.created_at,
        )
