"""Response models for tag endpoints."""

from typing import List

from pydantic import BaseModel

from pawfeed.pagination import PaginationMeta
from pawfeed.video.schemas import VideoSummary


class TagSearchResponse(BaseModel):
    tag: str
    items: List[VideoSummary]
    pagination: PaginationMeta


class PopularTag(BaseModel):
    tag: str
    video_count: int
    total_views: int


class TagSuggestion(BaseModel):
    tag: str
    video_count: int
