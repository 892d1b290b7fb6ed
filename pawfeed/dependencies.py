"""FastAPI dependency providers wiring services to their collaborators."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pawfeed.cache import Cache, get_cache
from pawfeed.comments.service import CommentService
from pawfeed.db import get_db
from pawfeed.likes.service import LikeService
from pawfeed.storage import StorageClient, get_storage_client
from pawfeed.tags.service import TagService
from pawfeed.video.queue import DramatiqEncodeQueue, EncodeQueue
from pawfeed.video.service import VideoService


def get_encode_queue() -> EncodeQueue:
    return DramatiqEncodeQueue()


def get_video_service(
    db: AsyncSession = Depends(get_db),
    storage: StorageClient = Depends(get_storage_client),
    cache: Cache = Depends(get_cache),
    queue: EncodeQueue = Depends(get_encode_queue),
) -> VideoService:
    return VideoService(db, storage=storage, cache=cache, queue=queue)


def get_like_service(
    db: AsyncSession = Depends(get_db),
    storage: StorageClient = Depends(get_storage_client),
    cache: Cache = Depends(get_cache),
) -> LikeService:
    return LikeService(db, storage=storage, cache=cache)


def get_comment_service(
    db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache),
) -> CommentService:
    return CommentService(db, cache=cache)


def get_tag_service(
    db: AsyncSession = Depends(get_db),
    storage: StorageClient = Depends(get_storage_client),
    cache: Cache = Depends(get_cache),
) -> TagService:
    return TagService(db, storage=storage, cache=cache)
