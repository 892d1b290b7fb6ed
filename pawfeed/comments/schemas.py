"""Request/response models for comment endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from pawfeed.models.video import UserRole
from pawfeed.pagination import PaginationMeta


class CommentCreateRequest(BaseModel):
    content: str = Field(..., description="Comment text (1-500 characters)")
    parent_id: Optional[str] = Field(None, description="Top-level comment being replied to")


class CommentUpdateRequest(BaseModel):
    content: str = Field(..., description="New comment text (1-500 characters)")


class CommentAuthor(BaseModel):
    user_id: str
    role: UserRole


class CommentCreatedResponse(BaseModel):
    comment_id: str
    parent_id: Optional[str] = None
    content: str
    created_at: datetime


class CommentUpdatedResponse(BaseModel):
    comment_id: str
    content: str
    updated_at: datetime


class CommentItem(BaseModel):
    comment_id: str
    content: str
    author: CommentAuthor
    like_count: int
    reply_count: Optional[int] = None  # Set for top-level comments only
    is_owner: bool
    created_at: datetime
    updated_at: datetime


class CommentPage(BaseModel):
    items: List[CommentItem]
    pagination: PaginationMeta


class CommentDeletedResponse(BaseModel):
    success: bool
