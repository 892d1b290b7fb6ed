"""Page/limit pagination shared by feed listings."""

import math

from pydantic import BaseModel

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50


class PaginationMeta(BaseModel):
    """Pagination block returned next to list items."""
    current_page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


def clamp_page(page: int, limit: int) -> tuple[int, int]:
    """Force page >= 1 and 1 <= limit <= MAX_PAGE_SIZE."""
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def offset_for(page: int, limit: int) -> int:
    return (page - 1) * limit


def build_pagination(page: int, limit: int, total: int) -> PaginationMeta:
    total_pages = math.ceil(total / limit) if total else 0
    return PaginationMeta(
        current_page=page,
        page_size=limit,
        total_items=total,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )
