"""Runs ``encode_video`` through the stub broker and a real dramatiq worker."""

import asyncio

import dramatiq
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import FakeEngine, FakeStorage, create_schema, create_video, file_engine
from pawfeed.cache import MemoryCache
from pawfeed.errors import TranscodeError
from pawfeed.models import Video, VideoStatus
from pawfeed.tasks import broker
from pawfeed.tasks import video_processor
from pawfeed.tasks.video_processor import (
    EncodingJobProcessor,
    JobOutcome,
    RetryPolicy,
    encode_video,
    hls_prefix,
)


class RecordingProcessor(EncodingJobProcessor):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.deliveries = []

    async def process(self, job):
        result = await super().process(job)
        self.deliveries.append((job.attempt, result))
        return result


@pytest.fixture
def worker_env(tmp_path, monkeypatch):
    # The worker runs actors on its own event loop, so nothing here may be bound to the test's loop
    engine = file_engine(tmp_path / "actor.db")
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    asyncio.run(create_schema(engine))

    storage = FakeStorage()
    media_engine = FakeEngine()
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    processor = RecordingProcessor(
        session_factory=session_factory,
        storage=storage,
        cache=MemoryCache(),
        engine=media_engine,
        policy=RetryPolicy(max_attempts=3, base_delay_ms=20, max_delay_ms=1000),
        resolutions=[360, 480, 720],
        lease_seconds=60,
        work_dir=str(work_dir),
    )
    monkeypatch.setattr(video_processor, "_processor", processor)

    broker.flush_all()
    yield session_factory, storage, media_engine, processor
    broker.flush_all()


def seed_processing_video(session_factory, storage):
    async def seed():
        video_id = await create_video(session_factory, status=VideoStatus.PROCESSING)
        async with session_factory() as session:
            raw_key = await session.scalar(select(Video.raw_key).where(Video.video_id == video_id))
        return video_id, raw_key

    video_id, raw_key = asyncio.run(seed())
    storage.objects[raw_key] = b"raw-mp4-bytes"
    return video_id, raw_key


def load(session_factory, video_id):
    async def fetch():
        async with session_factory() as session:
            return await session.get(Video, video_id)

    return asyncio.run(fetch())


def run_worker():
    worker = dramatiq.Worker(broker, worker_timeout=50)
    worker.start()
    try:
        broker.join(encode_video.queue_name, timeout=30000)
        worker.join()
    finally:
        worker.stop()


def test_actor_retries_three_times_then_fails_once(worker_env):
    session_factory, storage, media_engine, processor = worker_env
    media_engine.transcode_errors = [TranscodeError(resolution=720) for _ in range(3)]
    video_id, raw_key = seed_processing_video(session_factory, storage)

    encode_video.send(str(video_id), raw_key)
    run_worker()

    attempts = [attempt for attempt, _ in processor.deliveries]
    outcomes = [result.outcome for _, result in processor.deliveries]
    delays = [result.retry_delay_ms for _, result in processor.deliveries[:2]]
    assert attempts == [1, 2, 3]
    assert outcomes == [JobOutcome.RETRY, JobOutcome.RETRY, JobOutcome.FAILED]
    assert delays == [20, 40]
    assert media_engine.calls.count("transcode") == 3

    video = load(session_factory, video_id)
    assert video.status == VideoStatus.FAILED
    assert video.failure_reason == "HLS transcoding failed at 720p"
    assert storage.keys_under(hls_prefix(video_id)) == []


def test_actor_recovers_after_one_transient_failure(worker_env):
    session_factory, storage, media_engine, processor = worker_env
    media_engine.transcode_errors = [TranscodeError(resolution=480)]
    video_id, raw_key = seed_processing_video(session_factory, storage)

    encode_video.send(str(video_id), raw_key)
    run_worker()

    assert [(attempt, result.outcome) for attempt, result in processor.deliveries] == [
        (1, JobOutcome.RETRY),
        (2, JobOutcome.SUCCEEDED),
    ]
    assert load(session_factory, video_id).status == VideoStatus.READY


def test_duplicate_message_is_a_no_op(worker_env):
    session_factory, storage, media_engine, processor = worker_env
    video_id, raw_key = seed_processing_video(session_factory, storage)

    encode_video.send(str(video_id), raw_key)
    run_worker()
    encode_video.send(str(video_id), raw_key)
    run_worker()

    assert [result.outcome for _, result in processor.deliveries] == [JobOutcome.SUCCEEDED, JobOutcome.SKIPPED]
    assert media_engine.calls.count("transcode") == 1
    assert load(session_factory, video_id).status == VideoStatus.READY
