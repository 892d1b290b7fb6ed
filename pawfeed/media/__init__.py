"""Media transcoding engine (ffmpeg/ffprobe)."""

from pawfeed.media.engine import (
    FFmpegEngine,
    MediaMetadata,
    build_master_playlist,
    bitrate_kbps,
    rendition_width,
    resolutions_for_source,
    segment_name,
)

__all__ = [
    "FFmpegEngine",
    "MediaMetadata",
    "build_master_playlist",
    "bitrate_kbps",
    "rendition_width",
    "resolutions_for_source",
    "segment_name",
]
