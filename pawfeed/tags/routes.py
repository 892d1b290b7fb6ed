"""Tag routes."""

from typing import List

from fastapi import APIRouter, Depends, Query

from pawfeed.dependencies import get_tag_service
from pawfeed.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from pawfeed.tags.schemas import PopularTag, TagSearchResponse, TagSuggestion
from pawfeed.tags.service import TagService

router = APIRouter()


@router.get("/search", response_model=TagSearchResponse)
async def search_by_tag(
    tag: str = Query(..., min_length=1, description="Tag, with or without '#'"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    service: TagService = Depends(get_tag_service),
) -> TagSearchResponse:
    """Ready public videos with the given tag."""
    return await service.search_by_tag(tag, page, limit)


@router.get("/popular", response_model=List[PopularTag])
async def get_popular_tags(
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    service: TagService = Depends(get_tag_service),
) -> List[PopularTag]:
    """Most used tags."""
    return await service.get_popular_tags(limit)


@router.get("/suggest", response_model=List[TagSuggestion])
async def suggest_tags(
    q: str = Query(..., description="Tag prefix"),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    service: TagService = Depends(get_tag_service),
) -> List[TagSuggestion]:
    """Autocomplete tags by prefix."""
    return await service.suggest_tags(q, limit)
