"""Encode job queue port."""

import asyncio
from uuid import UUID

from pawfeed.errors import TransientIOError
from pawfeed.logging_config import logger


class EncodeQueue:
    """Hands encode jobs to the worker pool."""

    async def enqueue(self, video_id: UUID, raw_key: str) -> None:
        raise NotImplementedError


class DramatiqEncodeQueue(EncodeQueue):
    """Sends ``encode_video`` messages through the configured dramatiq broker."""

    async def enqueue(self, video_id: UUID, raw_key: str) -> None:
        from pawfeed.tasks.video_processor import encode_video

        try:
            message = await asyncio.to_thread(encode_video.send, str(video_id), raw_key)
        except Exception as e:
            logger.error("Failed to queue encode job", video_id=str(video_id), error=str(e))
            raise TransientIOError("Could not queue video for encoding") from e

        logger.info("Queued encode job", video_id=str(video_id), message_id=message.message_id)
