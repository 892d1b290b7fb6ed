"""Tag search, popular tags and autocomplete over ready public videos."""

from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawfeed.cache import Cache, popular_tags_key, read_json, tag_search_key, write_json
from pawfeed.config import settings
from pawfeed.logging_config import logger
from pawfeed.models import Video, VideoStatus, VideoTag
from pawfeed.pagination import build_pagination, clamp_page, offset_for
from pawfeed.storage import StorageClient
from pawfeed.tags.normalize import normalize_tag
from pawfeed.tags.schemas import PopularTag, TagSearchResponse, TagSuggestion
from pawfeed.video.presenter import VideoPresenter

PUBLIC_READY = (Video.status == VideoStatus.READY, Video.is_public.is_(True))


class TagService:
    """Read-only projections over video tags."""

    def __init__(self, db: AsyncSession, storage: StorageClient, cache: Cache):
        self.db = db
        self.cache = cache
        self.presenter = VideoPresenter(storage, cache)

    async def search_by_tag(self, tag: str, page: int = 1, limit: int = 20) -> TagSearchResponse:
        """
        Ready public videos carrying ``tag``, newest first.

        ``#강아지``, ``강아지`` and ``#Puppy``/``puppy`` style variants hit the same
        cache entry and return the same results.

        Args:
            tag: Tag as typed by the user
            page: 1-based page
            limit: Page size

        Returns:
            TagSearchResponse
        """
        clean_tag = normalize_tag(tag)
        page, limit = clamp_page(page, limit)

        cache_key = tag_search_key(clean_tag, page, limit)
        cached = await read_json(self.cache, cache_key)
        if cached is not None:
            return TagSearchResponse.model_validate(cached)

        if not clean_tag:
            return TagSearchResponse(tag="", items=[], pagination=build_pagination(page, limit, 0))

        where = [VideoTag.tag == clean_tag, *PUBLIC_READY]
        total = await self.db.scalar(
            select(func.count(Video.video_id))
            .join(VideoTag, VideoTag.video_id == Video.video_id)
            .where(*where)
        ) or 0
        result = await self.db.execute(
            select(Video)
            .join(VideoTag, VideoTag.video_id == Video.video_id)
            .where(*where)
            .order_by(Video.created_at.desc(), Video.video_id.desc())
            .offset(offset_for(page, limit))
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        response = TagSearchResponse(
            tag=clean_tag,
            items=[await self.presenter.summary(v) for v in result.scalars().all()],
            pagination=build_pagination(page, limit, total),
        )
        await write_json(self.cache, cache_key, response.model_dump(mode="json"), settings.tag_search_cache_ttl)

        logger.debug("Tag search", tag=clean_tag, page=page, total=total)
        return response

    async def get_popular_tags(self, limit: int = 20) -> List[PopularTag]:
        """Tags by number of ready public videos, then by their summed views."""
        _, limit = clamp_page(1, limit)

        cache_key = popular_tags_key(limit)
        cached = await read_json(self.cache, cache_key)
        if cached is not None:
            return [PopularTag.model_validate(item) for item in cached]

        video_count = func.count(VideoTag.video_id)
        total_views = func.coalesce(func.sum(Video.view_count), 0)
        result = await self.db.execute(
            select(VideoTag.tag, video_count, total_views)
            .join(Video, Video.video_id == VideoTag.video_id)
            .where(*PUBLIC_READY)
            .group_by(VideoTag.tag)
            .order_by(video_count.desc(), total_views.desc(), VideoTag.tag.asc())
            .limit(limit)
        )
        tags = [
            PopularTag(tag=tag, video_count=count, total_views=views)
            for tag, count, views in result.all()
        ]

        await write_json(
            self.cache,
            cache_key,
            [t.model_dump(mode="json") for t in tags],
            settings.popular_tags_cache_ttl,
        )
        return tags

    async def suggest_tags(self, query: str, limit: int = 10) -> List[TagSuggestion]:
        """Tags starting with ``query`` (after normalization), most used first."""
        clean_query = normalize_tag(query)
        if len(clean_query) < 1:
            return []
        _, limit = clamp_page(1, limit)

        video_count = func.count(VideoTag.video_id)
        result = await self.db.execute(
            select(VideoTag.tag, video_count)
            .join(Video, Video.video_id == VideoTag.video_id)
            .where(VideoTag.tag.startswith(clean_query, autoescape=True), *PUBLIC_READY)
            .group_by(VideoTag.tag)
            .order_by(video_count.desc(), VideoTag.tag.asc())
            .limit(limit)
        )
        return [TagSuggestion(tag=tag, video_count=count) for tag, count in result.all()]
