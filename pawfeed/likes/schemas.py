"""Request/response models for like endpoints."""

from pydantic import BaseModel


class LikeToggleResponse(BaseModel):
    is_liked: bool
    like_count: int


class LikeStatusResponse(BaseModel):
    is_liked: bool
    like_count: int
