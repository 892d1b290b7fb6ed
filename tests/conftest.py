"""Shared fixtures: in-memory database, fake storage/queue/engine, auth tokens."""

import os

# Settings are read at import time
os.environ.setdefault("POSTGRES_URL", "sqlite+aiosqlite:///pawfeed-test.db")
os.environ.setdefault("DRAMATIQ_BROKER", "stub")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ENABLE_PROMETHEUS", "false")
os.environ.setdefault("LOG_FORMAT", "text")

from pathlib import Path
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4

import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from pawfeed.cache import MemoryCache
from pawfeed.config import settings
from pawfeed.errors import NotFoundError, TransientIOError
from pawfeed.media.engine import MASTER_PLAYLIST, MediaMetadata, build_master_playlist, segment_name
from pawfeed.models import Base, UserRole, Video, VideoStatus, VideoTag
from pawfeed.tasks.video_processor import EncodingJobProcessor, RetryPolicy
from pawfeed.video.queue import EncodeQueue
from pawfeed.video.service import VideoService


class FakeStorage:
    """In-memory stand-in for StorageClient."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.broken_keys: set = set()
        self.fail_uploads = False
        self.fail_deletes = False
        self.get_calls: List[str] = []

    def issue_signed_upload_url(self, key: str, ttl_seconds: int) -> str:
        return f"https://storage.test/put/{key}?expires={ttl_seconds}"

    def issue_signed_playback_url(self, key: str, ttl_seconds: int) -> str:
        return f"https://storage.test/get/{key}?expires={ttl_seconds}"

    def put_object(self, key: str, data: bytes, content_type: Optional[str] = None):
        self.objects[key] = data

    def get_object(self, key: str) -> bytes:
        self.get_calls.append(key)
        if key in self.broken_keys:
            raise TransientIOError(f"Download failed for {key}")
        if key not in self.objects:
            raise NotFoundError("File not found")
        return self.objects[key]

    def download_file(self, key: str, file_path: str):
        if key not in self.objects:
            raise NotFoundError(f"Raw upload {key} not found")
        Path(file_path).write_bytes(self.objects[key])

    def upload_file(self, key: str, file_path: str, content_type: Optional[str] = None):
        if self.fail_uploads:
            raise TransientIOError(f"Upload failed for {key}")
        self.objects[key] = Path(file_path).read_bytes()

    def delete_object(self, key: str):
        if self.fail_deletes:
            raise TransientIOError(f"Delete failed for {key}")
        self.objects.pop(key, None)
        self.deleted.append(key)

    def list_objects(self, prefix: str) -> List[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))

    def delete_prefix(self, prefix: str) -> int:
        keys = self.list_objects(prefix)
        for key in keys:
            self.delete_object(key)
        return len(keys)

    def keys_under(self, prefix: str) -> List[str]:
        return self.list_objects(prefix)


class FakeQueue(EncodeQueue):
    def __init__(self):
        self.jobs: List[Tuple[UUID, str]] = []
        self.fail = False

    async def enqueue(self, video_id: UUID, raw_key: str) -> None:
        if self.fail:
            raise TransientIOError("broker down")
        self.jobs.append((video_id, raw_key))


class FakeEngine:
    """Media engine that writes small placeholder artifacts instead of running ffmpeg."""

    def __init__(self, metadata: Optional[MediaMetadata] = None, segments_per_rendition: int = 3):
        self.metadata = metadata or MediaMetadata(
            duration_seconds=42, width=1280, height=720, codec="h264", bitrate=2_500_000
        )
        self.segments_per_rendition = segments_per_rendition
        self.probe_error: Optional[Exception] = None
        self.transcode_errors: List[Exception] = []
        self.thumbnail_errors: List[Exception] = []
        self.calls: List[str] = []
        self.input_paths: List[str] = []

    def probe_metadata(self, input_path: str) -> MediaMetadata:
        self.calls.append("probe")
        self.input_paths.append(input_path)
        if self.probe_error:
            raise self.probe_error
        return self.metadata

    def generate_thumbnail(self, input_path, output_path, capture_at_percent=10, duration_seconds=None):
        self.calls.append("thumbnail")
        if self.thumbnail_errors:
            raise self.thumbnail_errors.pop(0)
        Path(output_path).write_bytes(b"\xff\xd8jpeg")

    def transcode_to_adaptive_hls(self, input_path, output_dir, resolutions=(360, 480, 720)):
        self.calls.append("transcode")
        if self.transcode_errors:
            raise self.transcode_errors.pop(0)
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        for height in resolutions:
            (out / f"stream_{height}p.m3u8").write_text(f"#EXTM3U\n# {height}p\n")
            for index in range(self.segments_per_rendition):
                (out / segment_name(height, index)).write_bytes(f"{height}-{index}".encode())
        (out / MASTER_PLAYLIST).write_text(build_master_playlist(resolutions))


def make_token(user_id: str, role: str = "breeder", secret: Optional[str] = None) -> str:
    return jwt.encode(
        {"sub": user_id, "role": role},
        secret or settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def auth_headers(user_id: str, role: str = "breeder") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


async def create_video(
    session_factory,
    uploader_id: str = "breeder-1",
    status: VideoStatus = VideoStatus.READY,
    is_public: bool = True,
    tags: Optional[List[str]] = None,
    view_count: int = 0,
    title: str = "puppy-intro",
    height: int = 720,
    created_at=None,
) -> UUID:
    """Insert a video row directly, as if it went through the encode pipeline."""
    video_id = uuid4()
    ready = status == VideoStatus.READY
    video = Video(
        video_id=video_id,
        uploader_id=uploader_id,
        uploader_role=UserRole.BREEDER,
        title=title,
        status=status,
        raw_key=f"videos/raw/{uuid4()}.mp4",
        hls_key=f"videos/hls/{video_id}/master.m3u8" if ready else None,
        thumbnail_key=f"videos/thumbnails/{video_id}.jpg" if ready else None,
        duration=42 if ready else 0,
        width=1280 if ready else None,
        height=height if ready else None,
        view_count=view_count,
        is_public=is_public,
        failure_reason="HLS transcoding failed at 720p" if status == VideoStatus.FAILED else None,
    )
    if created_at is not None:
        video.created_at = created_at
    video.tag_rows = [VideoTag(tag=tag, position=i) for i, tag in enumerate(tags or [])]
    async with session_factory() as session:
        session.add(video)
        await session.commit()
    return video_id


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def file_engine(path: Path):
    """Engine over a SQLite file with one connection per session, so transactions really overlap."""
    return create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )


async def create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def file_session_factory(tmp_path):
    engine = file_engine(tmp_path / "feed.db")
    await create_schema(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def media_engine():
    return FakeEngine()


@pytest.fixture
def video_service(db, storage, cache, queue):
    return VideoService(db, storage=storage, cache=cache, queue=queue)


@pytest.fixture
def processor(session_factory, storage, cache, media_engine, tmp_path):
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    return EncodingJobProcessor(
        session_factory=session_factory,
        storage=storage,
        cache=cache,
        engine=media_engine,
        policy=RetryPolicy(max_attempts=3, base_delay_ms=10000),
        resolutions=[360, 480, 720],
        lease_seconds=1800,
        work_dir=str(work_dir),
    )
