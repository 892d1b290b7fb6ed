#!/usr/bin/env python3
"""
Queue a sweep of videos stuck in 'uploading' (URL issued, upload never completed).
Usage: docker compose exec api python scripts/sweep_abandoned_uploads.py
"""

from pawfeed.config import settings
from pawfeed.tasks.video_processor import sweep_abandoned_uploads

print(
    "Queueing sweep of uploads older than "
    f"{settings.abandoned_upload_retention_hours}h..."
)
message = sweep_abandoned_uploads.send()
print(f"Sweep queued (message_id={message.message_id})")
