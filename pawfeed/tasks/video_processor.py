"""
HLS encoding pipeline for feed videos.

This module handles the background half of the upload flow:
1. Claim (status check + per-video lease)
2. Stage the raw upload in a temporary directory
3. Probe metadata (ffprobe)
4. Thumbnail
5. Adaptive HLS transcoding
6. Upload renditions, master playlist and thumbnail
7. Conditional processing -> ready update
8. Metadata cache invalidation

Delivery is at-least-once, so every state change is a conditional update from
``processing`` and a job that finds the video already finished does nothing.
Every failure inside a delivery, database errors included, ends in a retry, a
deferral or a ``failed`` transition; none leaves the video parked in
``processing`` without a message to finish it.
"""

import asyncio
import enum
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Sequence
from uuid import UUID

import dramatiq
from dramatiq.middleware import CurrentMessage
from sqlalchemy import or_, select, update
from sqlalchemy.exc import InterfaceError, OperationalError

from pawfeed.tasks import broker
from pawfeed.best_effort import best_effort
from pawfeed.cache import Cache, get_cache, video_meta_key
from pawfeed.config import settings
from pawfeed.db import AsyncSessionLocal
from pawfeed.errors import FeedError, ThumbnailError, TranscodeError, TransientIOError
from pawfeed.logging_config import logger
from pawfeed.media.engine import MASTER_PLAYLIST, FFmpegEngine, resolutions_for_source
from pawfeed.metrics import encode_duration_seconds, encode_jobs_total
from pawfeed.models.video import Video, VideoStatus, utcnow
from pawfeed.storage import StorageClient, get_storage_client

dramatiq.set_broker(broker)

RETRYABLE_ERRORS = (
    TransientIOError,
    TranscodeError,
    ThumbnailError,
    # Dropped database connections and lock timeouts
    OperationalError,
    InterfaceError,
    ConnectionError,
    TimeoutError,
)
FAILURE_REASON_MAX_LENGTH = 500
TIMED_OUT_REASON = "Encoding exceeded the time limit"

# Slack added to a deferral so the held lease has expired when the job returns
LEASE_RECHECK_MARGIN_MS = 5000

# Message option carrying the 1-based encode attempt across redeliveries
ATTEMPT_OPTION = "encode_attempt"


def hls_prefix(video_id) -> str:
    return f"videos/hls/{video_id}/"


def thumbnail_key(video_id) -> str:
    return f"videos/thumbnails/{video_id}.jpg"


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class EncodeJob:
    """One delivery of an encode job."""
    video_id: UUID
    raw_key: str
    attempt: int = 1
    max_attempts: int = 3


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and exponential backoff for encode jobs."""
    max_attempts: int = 3
    base_delay_ms: int = 10000
    max_delay_ms: int = 600000

    def delay_ms(self, attempt: int) -> int:
        """Delay before the attempt that follows ``attempt`` (1-based)."""
        return min(self.base_delay_ms * 2 ** (attempt - 1), self.max_delay_ms)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return isinstance(error, RETRYABLE_ERRORS) and attempt < self.max_attempts


class JobOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    RETRY = "retry"  # redeliver as the next attempt
    DEFERRED = "deferred"  # redeliver as the same attempt
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class JobResult:
    outcome: JobOutcome
    reason: Optional[str] = None
    retry_delay_ms: Optional[int] = None


@dataclass(frozen=True)
class Claim:
    claimed: bool
    skip_reason: Optional[str] = None
    held_until: Optional[datetime] = None


@dataclass(frozen=True)
class EncodedArtifacts:
    hls_key: str
    thumbnail_key: str
    duration: int
    width: int
    height: int
    uploaded_keys: tuple


def failure_reason_for(error: BaseException) -> str:
    """Human-readable failure reason stored on the video."""
    if isinstance(error, FeedError):
        reason = error.message
    else:
        reason = f"Unexpected encoding error ({type(error).__name__})"
    return reason[:FAILURE_REASON_MAX_LENGTH]


class EncodingJobProcessor:
    """Runs encode jobs against the database, object storage and the media engine."""

    def __init__(
        self,
        session_factory,
        storage: StorageClient,
        cache: Cache,
        engine: FFmpegEngine,
        policy: Optional[RetryPolicy] = None,
        resolutions: Optional[Sequence[int]] = None,
        lease_seconds: Optional[int] = None,
        thumbnail_capture_percent: int = 10,
        work_dir: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.cache = cache
        self.engine = engine
        self.policy = policy or RetryPolicy()
        self.resolutions = list(resolutions or (360, 480, 720))
        self.lease_seconds = lease_seconds or settings.encode_lease_seconds
        self.thumbnail_capture_percent = thumbnail_capture_percent
        self.work_dir = work_dir

    async def process(self, job: EncodeJob) -> JobResult:
        """
        Run one delivery of an encode job.

        Args:
            job: The job with its 1-based attempt number

        Returns:
            JobResult; RETRY and DEFERRED mean the caller should redeliver
            after retry_delay_ms, as the next or the same attempt

        Raises:
            asyncio.CancelledError: The delivery was interrupted; a claimed
                video has been marked failed first
        """
        log = logger.bind(video_id=str(job.video_id), attempt=job.attempt)
        claimed = False

        try:
            try:
                claim = await self._claim(job)
            except Exception as e:
                return await self._handle_failure(job, e, owns_lease=False)

            if not claim.claimed:
                return self._not_claimed(job, claim, log)
            claimed = True

            log.info("Starting encode job", raw_key=job.raw_key)
            started = time.monotonic()

            try:
                with tempfile.TemporaryDirectory(prefix="pawfeed-encode-", dir=self.work_dir) as temp_dir:
                    artifacts = await self._encode(job, Path(temp_dir))
                return await self._finalize(job, artifacts, time.monotonic() - started)
            except Exception as e:
                return await self._handle_failure(job, e)
        except asyncio.CancelledError:
            # Time limit hit; the coroutine gets a short window to clean up
            if claimed:
                log.error("Encode job interrupted", error=TIMED_OUT_REASON)
                await best_effort(
                    "mark_interrupted_encode_failed",
                    self._mark_failed(job, TIMED_OUT_REASON),
                    video_id=str(job.video_id),
                )
            raise

    def _not_claimed(self, job: EncodeJob, claim: Claim, log) -> JobResult:
        if claim.held_until is None:
            log.info("Skipping encode job", reason=claim.skip_reason)
            encode_jobs_total.labels(outcome=JobOutcome.SKIPPED.value).inc()
            return JobResult(JobOutcome.SKIPPED, reason=claim.skip_reason)

        # The holder may have crashed, so look again once its lease runs out
        remaining = as_utc(claim.held_until) - utcnow()
        delay_ms = max(int(remaining.total_seconds() * 1000), 0) + LEASE_RECHECK_MARGIN_MS
        log.info("Encode lease held elsewhere, deferring", reason=claim.skip_reason, retry_in_ms=delay_ms)
        encode_jobs_total.labels(outcome=JobOutcome.DEFERRED.value).inc()
        return JobResult(JobOutcome.DEFERRED, reason=claim.skip_reason, retry_delay_ms=delay_ms)

    async def _claim(self, job: EncodeJob) -> Claim:
        """Take the per-video lease."""
        async with self.session_factory() as session:
            row = (
                await session.execute(
                    select(Video.status, Video.encode_lease_until).where(Video.video_id == job.video_id)
                )
            ).first()
            if row is None:
                return Claim(False, "video not found")
            status, lease_until = row
            if status in (VideoStatus.READY, VideoStatus.FAILED):
                return Claim(False, f"video already {status.value}")
            if status == VideoStatus.UPLOADING:
                return Claim(False, "upload not completed")

            now = utcnow()
            new_lease = now + timedelta(seconds=self.lease_seconds)
            result = await session.execute(
                update(Video)
                .where(
                    Video.video_id == job.video_id,
                    Video.status == VideoStatus.PROCESSING,
                    or_(Video.encode_lease_until.is_(None), Video.encode_lease_until < now),
                )
                .values(encode_lease_until=new_lease)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount == 1:
            return Claim(True)

        if lease_until is None or as_utc(lease_until) <= now:
            # Lost the race to a delivery that claimed just now
            lease_until = new_lease
        return Claim(False, "another encode job holds the lease", held_until=lease_until)

    async def _encode(self, job: EncodeJob, temp_path: Path) -> EncodedArtifacts:
        raw_path = temp_path / "source.mp4"
        thumb_path = temp_path / "thumbnail.jpg"
        hls_dir = temp_path / "hls"

        await asyncio.to_thread(self.storage.download_file, job.raw_key, str(raw_path))

        metadata = await asyncio.to_thread(self.engine.probe_metadata, str(raw_path))

        await asyncio.to_thread(
            self.engine.generate_thumbnail,
            str(raw_path),
            str(thumb_path),
            self.thumbnail_capture_percent,
            metadata.duration_seconds,
        )

        resolutions = resolutions_for_source(metadata.height, self.resolutions)
        await asyncio.to_thread(
            self.engine.transcode_to_adaptive_hls,
            str(raw_path),
            str(hls_dir),
            resolutions,
        )

        prefix = hls_prefix(job.video_id)
        uploaded = []
        for path in sorted(hls_dir.iterdir()):
            if not path.is_file():
                continue
            key = f"{prefix}{path.name}"
            await asyncio.to_thread(self.storage.upload_file, key, str(path))
            uploaded.append(key)

        thumb_key = thumbnail_key(job.video_id)
        await asyncio.to_thread(self.storage.upload_file, thumb_key, str(thumb_path))
        uploaded.append(thumb_key)

        logger.info(
            "Uploaded encoded artifacts",
            video_id=str(job.video_id),
            files=len(uploaded),
            resolutions=resolutions,
        )

        return EncodedArtifacts(
            hls_key=f"{prefix}{MASTER_PLAYLIST}",
            thumbnail_key=thumb_key,
            duration=metadata.duration_seconds,
            width=metadata.width,
            height=metadata.height,
            uploaded_keys=tuple(uploaded),
        )

    async def _finalize(self, job: EncodeJob, artifacts: EncodedArtifacts, elapsed: float) -> JobResult:
        async with self.session_factory() as session:
            result = await session.execute(
                update(Video)
                .where(Video.video_id == job.video_id, Video.status == VideoStatus.PROCESSING)
                .values(
                    status=VideoStatus.READY,
                    hls_key=artifacts.hls_key,
                    thumbnail_key=artifacts.thumbnail_key,
                    duration=artifacts.duration,
                    width=artifacts.width,
                    height=artifacts.height,
                    failure_reason=None,
                    encode_lease_until=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount != 1:
            # Owner deleted the video while it was encoding
            logger.warning("Video gone before ready, removing artifacts", video_id=str(job.video_id))
            await self._remove_artifacts(job.video_id)
            encode_jobs_total.labels(outcome=JobOutcome.SKIPPED.value).inc()
            return JobResult(JobOutcome.SKIPPED, reason="video no longer processing")

        await best_effort(
            "invalidate_video_meta",
            self.cache.delete(video_meta_key(job.video_id)),
            video_id=str(job.video_id),
        )

        encode_duration_seconds.observe(elapsed)
        encode_jobs_total.labels(outcome=JobOutcome.SUCCEEDED.value).inc()
        logger.info(
            "Video ready",
            video_id=str(job.video_id),
            duration=artifacts.duration,
            width=artifacts.width,
            height=artifacts.height,
            elapsed_seconds=round(elapsed, 2),
        )
        return JobResult(JobOutcome.SUCCEEDED)

    async def _handle_failure(self, job: EncodeJob, error: Exception, owns_lease: bool = True) -> JobResult:
        reason = failure_reason_for(error)

        if self.policy.should_retry(error, job.attempt):
            delay_ms = self.policy.delay_ms(job.attempt)
            logger.warning(
                "Encode attempt failed, will retry",
                video_id=str(job.video_id),
                attempt=job.attempt,
                max_attempts=self.policy.max_attempts,
                retry_in_ms=delay_ms,
                error=reason,
                error_type=type(error).__name__,
            )
            if owns_lease:
                await best_effort(
                    "release_encode_lease",
                    self._release_lease(job.video_id),
                    video_id=str(job.video_id),
                )
            encode_jobs_total.labels(outcome=JobOutcome.RETRY.value).inc()
            return JobResult(JobOutcome.RETRY, reason=reason, retry_delay_ms=delay_ms)

        logger.error(
            "Encode job failed",
            video_id=str(job.video_id),
            attempt=job.attempt,
            error=reason,
            error_type=type(error).__name__,
            exc_info=not isinstance(error, FeedError),
        )

        try:
            transitioned = await self._mark_failed(job, reason, owns_lease=owns_lease)
        except Exception as e:
            # The failed state itself could not be written; come back as the same attempt
            delay_ms = self.policy.delay_ms(job.attempt)
            logger.error(
                "Could not record encode failure, deferring",
                video_id=str(job.video_id),
                attempt=job.attempt,
                retry_in_ms=delay_ms,
                error=str(e),
                error_type=type(e).__name__,
            )
            if owns_lease:
                await best_effort(
                    "release_encode_lease",
                    self._release_lease(job.video_id),
                    video_id=str(job.video_id),
                )
            encode_jobs_total.labels(outcome=JobOutcome.DEFERRED.value).inc()
            return JobResult(JobOutcome.DEFERRED, reason=reason, retry_delay_ms=delay_ms)

        if not transitioned:
            encode_jobs_total.labels(outcome=JobOutcome.SKIPPED.value).inc()
            return JobResult(JobOutcome.SKIPPED, reason="video no longer processing")

        encode_jobs_total.labels(outcome=JobOutcome.FAILED.value).inc()
        return JobResult(JobOutcome.FAILED, reason=reason)

    async def _mark_failed(self, job: EncodeJob, reason: str, owns_lease: bool = True) -> bool:
        """Conditional processing -> failed update. Returns whether this call made the transition."""
        conditions = [Video.video_id == job.video_id, Video.status == VideoStatus.PROCESSING]
        if not owns_lease:
            # Never fail a video another delivery is encoding
            conditions.append(or_(Video.encode_lease_until.is_(None), Video.encode_lease_until < utcnow()))

        async with self.session_factory() as session:
            result = await session.execute(
                update(Video)
                .where(*conditions)
                .values(
                    status=VideoStatus.FAILED,
                    failure_reason=reason,
                    encode_lease_until=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            transitioned = result.rowcount == 1
            video_gone = False
            if not transitioned:
                remaining = await session.scalar(select(Video.video_id).where(Video.video_id == job.video_id))
                video_gone = remaining is None

        # Renditions from a partial upload are never served
        if transitioned or video_gone:
            await self._remove_artifacts(job.video_id)

        if transitioned:
            await best_effort(
                "invalidate_video_meta",
                self.cache.delete(video_meta_key(job.video_id)),
                video_id=str(job.video_id),
            )
        return transitioned

    async def _release_lease(self, video_id: UUID):
        async with self.session_factory() as session:
            await session.execute(
                update(Video)
                .where(Video.video_id == video_id, Video.status == VideoStatus.PROCESSING)
                .values(encode_lease_until=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _remove_artifacts(self, video_id: UUID):
        await best_effort(
            "delete_hls_prefix",
            asyncio.to_thread(self.storage.delete_prefix, hls_prefix(video_id)),
            video_id=str(video_id),
        )
        await best_effort(
            "delete_thumbnail",
            asyncio.to_thread(self.storage.delete_object, thumbnail_key(video_id)),
            video_id=str(video_id),
        )


_processor: Optional[EncodingJobProcessor] = None


def get_processor() -> EncodingJobProcessor:
    """Get or create the worker's job processor."""
    global _processor
    if _processor is None:
        _processor = EncodingJobProcessor(
            session_factory=AsyncSessionLocal,
            storage=get_storage_client(),
            cache=get_cache(),
            engine=FFmpegEngine(
                ffmpeg_path=settings.ffmpeg_path,
                ffprobe_path=settings.ffprobe_path,
                segment_seconds=settings.hls_segment_seconds,
            ),
            policy=RetryPolicy(
                max_attempts=settings.encode_max_attempts,
                base_delay_ms=settings.encode_retry_base_delay_ms,
                max_delay_ms=settings.encode_retry_max_delay_ms,
            ),
            resolutions=settings.hls_resolutions,
            lease_seconds=settings.encode_lease_seconds,
            thumbnail_capture_percent=settings.thumbnail_capture_percent,
            work_dir=settings.work_dir,
        )
    return _processor


def should_retry_message(retries: int, exception: BaseException) -> bool:
    """
    Redelivery rule for ``encode_video`` messages.

    Retries the processor asked for always go back on the queue; they are
    bounded by the attempt limit and by lease expiry. Anything that escaped
    the processor (time limit, worker-side errors) gets a bounded number of
    redeliveries, which are no-ops once the video is ``ready`` or ``failed``.
    """
    if isinstance(exception, dramatiq.Retry):
        return True
    return retries < settings.encode_max_attempts


def current_attempt() -> int:
    """1-based encode attempt of the message being processed."""
    message = CurrentMessage.get_current_message()
    if message is None:
        return 1
    return message.options.get(ATTEMPT_OPTION, 1)


def advance_attempt(attempt: int):
    """Record the attempt number the redelivered message should run as."""
    message = CurrentMessage.get_current_message()
    if message is not None:
        message.options[ATTEMPT_OPTION] = attempt


@dramatiq.actor(
    queue_name="video_encoding",
    min_backoff=settings.encode_retry_base_delay_ms,
    max_backoff=settings.encode_retry_max_delay_ms,
    time_limit=settings.encode_time_limit_ms,
    retry_when=should_retry_message,
)
async def encode_video(video_id: str, raw_key: str):
    """
    Encode an uploaded video into HLS renditions.

    Args:
        video_id: UUID of the video in ``processing``
        raw_key: Storage key of the raw upload
    """
    job = EncodeJob(
        video_id=UUID(video_id),
        raw_key=raw_key,
        attempt=current_attempt(),
        max_attempts=settings.encode_max_attempts,
    )
    result = await get_processor().process(job)

    if result.outcome == JobOutcome.RETRY:
        advance_attempt(job.attempt + 1)
        raise dramatiq.Retry(result.reason or "retryable failure", delay=result.retry_delay_ms)
    if result.outcome == JobOutcome.DEFERRED:
        raise dramatiq.Retry(result.reason or "deferred", delay=result.retry_delay_ms)


@dramatiq.actor(queue_name="maintenance", max_retries=0)
async def sweep_abandoned_uploads():
    """Delete videos stuck in ``uploading`` past the retention window."""
    from pawfeed.video.queue import DramatiqEncodeQueue
    from pawfeed.video.service import VideoService

    async with AsyncSessionLocal() as session:
        service = VideoService(
            session,
            storage=get_storage_client(),
            cache=get_cache(),
            queue=DramatiqEncodeQueue(),
        )
        removed = await service.sweep_abandoned_uploads(
            older_than=timedelta(hours=settings.abandoned_upload_retention_hours)
        )
    logger.info("Abandoned upload sweep finished", removed=removed)
