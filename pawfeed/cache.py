"""Key/value cache with TTL.

The cache is an invalidate-on-write side channel: any value may be dropped and
recomputed, so services treat every cache failure as a miss.
"""

import json
import time
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from pawfeed.best_effort import BestEffort, best_effort
from pawfeed.config import settings
from pawfeed.errors import TransientIOError
from pawfeed.logging_config import logger


def video_meta_key(video_id) -> str:
    return f"video:meta:{video_id}"


def video_comments_key(video_id) -> str:
    return f"video:comments:{video_id}"


def hls_file_key(video_id, filename: str) -> str:
    return f"hls:{video_id}:{filename}"


def signed_url_key(object_key: str) -> str:
    return f"signed-url:{object_key}"


def tag_search_key(tag: str, page: int, limit: int) -> str:
    return f"video:tag:{tag}:{page}:{limit}"


def popular_tags_key(limit: int) -> str:
    return f"video:popular-tags:{limit}"


class Cache:
    """Cache port. Values are bytes; JSON helpers sit on top."""

    async def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        raise NotImplementedError

    async def delete(self, *keys: str) -> None:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def get_json(self, key: str) -> Any:
        raw = await self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        await self.set(key, json.dumps(value, ensure_ascii=False, default=str).encode("utf-8"), ttl)


class NullCache(Cache):
    """Cache that stores nothing."""

    async def get(self, key: str) -> Optional[bytes]:
        return None

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        return None

    async def delete(self, *keys: str) -> None:
        return None

    async def exists(self, key: str) -> bool:
        return False


class MemoryCache(Cache):
    """In-process TTL cache for tests and single-process local runs."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._items: Dict[str, Tuple[bytes, float]] = {}

    def _live(self, key: str) -> Optional[bytes]:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self._clock():
            del self._items[key]
            return None
        return value

    async def get(self, key: str) -> Optional[bytes]:
        return self._live(key)

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        if ttl <= 0:
            return
        self._items[key] = (value, self._clock() + ttl)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._items.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None


class RedisCache(Cache):
    """Redis-backed cache."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise TransientIOError(f"Cache read failed for {key}") from e

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        if ttl <= 0:
            return
        try:
            await self.client.set(key, value, ex=ttl)
        except RedisError as e:
            raise TransientIOError(f"Cache write failed for {key}") from e

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self.client.delete(*keys)
        except RedisError as e:
            raise TransientIOError("Cache delete failed") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except RedisError as e:
            raise TransientIOError(f"Cache lookup failed for {key}") from e


_cache: Optional[Cache] = None


def get_cache() -> Cache:
    """Get the process-wide cache (for dependency injection)."""
    global _cache
    if _cache is None:
        if settings.cache_backend == "redis":
            _cache = RedisCache(aioredis.from_url(settings.redis_url))
        elif settings.cache_backend == "memory":
            _cache = MemoryCache()
        else:
            _cache = NullCache()
        logger.info("Cache initialized", backend=settings.cache_backend)
    return _cache


async def read_json(cache: Cache, key: str) -> Any:
    """Cached JSON value, or None on a miss or a cache failure."""
    outcome = await best_effort("cache_read", cache.get_json(key), key=key)
    return outcome.value if outcome.ok else None


async def write_json(cache: Cache, key: str, value: Any, ttl: int) -> BestEffort:
    return await best_effort("cache_write", cache.set_json(key, value, ttl), key=key)


async def invalidate(cache: Cache, *keys: str) -> BestEffort:
    """Drop cache entries after a write. Failures are logged, never raised."""
    return await best_effort("cache_invalidate", cache.delete(*keys), keys=list(keys))
