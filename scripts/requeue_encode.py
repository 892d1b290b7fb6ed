#!/usr/bin/env python3
"""
Re-send the encode job for a video stuck in 'processing' (e.g. the broker lost the message).
Usage: docker compose exec api python scripts/requeue_encode.py <video_id>
"""

import asyncio
import sys
from uuid import UUID

from sqlalchemy import select

from pawfeed.db import AsyncSessionLocal, close_db
from pawfeed.models import Video, VideoStatus
from pawfeed.tasks.video_processor import encode_video


async def main(video_id: UUID) -> int:
    async with AsyncSessionLocal() as session:
        row = (
            await session.execute(select(Video.status, Video.raw_key).where(Video.video_id == video_id))
        ).first()
    await close_db()

    if row is None:
        print(f"Video {video_id} not found")
        return 1
    status, raw_key = row
    if status != VideoStatus.PROCESSING:
        print(f"Video {video_id} is '{status.value}', only 'processing' videos can be requeued")
        return 1

    print(f"Sending video {video_id} to encoding queue...")
    encode_video.send(str(video_id), raw_key)
    print("Task sent successfully!")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(UUID(sys.argv[1]))))
