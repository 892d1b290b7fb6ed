"""
ffmpeg/ffprobe wrapper for feed videos.

Turns a local input file into playback artifacts:
1. Metadata probe (ffprobe)
2. Thumbnail (single frame, 1280x720 JPEG)
3. Adaptive-bitrate HLS renditions + master playlist

The engine knows nothing about videos in the database or object storage and
never retries; retry policy belongs to the encoding job processor.
"""

import json
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from pawfeed.errors import ProbeError, ThumbnailError, TranscodeError
from pawfeed.logging_config import logger

DEFAULT_RESOLUTIONS = (360, 480, 720)

# Video bitrate per rendition height, in kbps
BITRATE_KBPS = {
    360: 800,
    480: 1400,
    720: 2800,
    1080: 5000,
}
DEFAULT_BITRATE_KBPS = 1400
AUDIO_BITRATE = "128k"

THUMBNAIL_SIZE = (1280, 720)
MASTER_PLAYLIST = "master.m3u8"


@dataclass(frozen=True)
class MediaMetadata:
    """Result of probing an input file."""
    duration_seconds: int
    width: int
    height: int
    codec: str
    bitrate: int


def bitrate_kbps(height: int) -> int:
    """Return the video bitrate for a rendition height."""
    return BITRATE_KBPS.get(height, DEFAULT_BITRATE_KBPS)


def rendition_width(height: int) -> int:
    """16:9 width for ``height``, rounded to an even number."""
    return int(round(height * 16 / 9 / 2)) * 2


def rendition_playlist_name(height: int) -> str:
    return f"stream_{height}p.m3u8"


def segment_name(height: int, index: int) -> str:
    return f"stream_{height}p_{index:03d}.ts"


def resolutions_for_source(source_height: int, ladder: Sequence[int] = DEFAULT_RESOLUTIONS) -> List[int]:
    """
    Pick output renditions for a source video.

    Renditions taller than the source are dropped, but at least the lowest rung
    of the ladder is always produced (small sources get upscaled).

    Args:
        source_height: Height of the uploaded video in pixels
        ladder: Candidate rendition heights

    Returns:
        Sorted list of rendition heights
    """
    ladder = sorted(ladder)
    picked = [height for height in ladder if height <= source_height]
    return picked or ladder[:1]


def build_master_playlist(resolutions: Sequence[int]) -> str:
    """Build master.m3u8 content listing each rendition with its bandwidth."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for height in resolutions:
        bandwidth = bitrate_kbps(height) * 1000
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},RESOLUTION={rendition_width(height)}x{height}"
        )
        lines.append(rendition_playlist_name(height))
    return "\n".join(lines) + "\n"


class FFmpegEngine:
    """Stateless transcoding engine driving the ffmpeg toolchain."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        segment_seconds: int = 6,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.segment_seconds = segment_seconds

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        logger.debug("Running media command", command=" ".join(cmd))
        return subprocess.run(cmd, capture_output=True, text=True)

    def probe_metadata(self, input_path: str) -> MediaMetadata:
        """
        Read duration, dimensions, codec and bitrate with ffprobe.

        Args:
            input_path: Path to video file

        Returns:
            MediaMetadata

        Raises:
            ProbeError: If the file is unreadable or has no decodable video stream
        """
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_format",
            "-show_streams",
            "-print_format", "json",
            input_path,
        ]

        try:
            result = self._run(cmd)
        except OSError as e:
            raise ProbeError(f"Could not run ffprobe: {e}") from e

        if result.returncode != 0:
            raise ProbeError(f"Invalid video file: {result.stderr.strip()}")

        try:
            info = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError("Could not parse ffprobe output") from e

        video_stream = next(
            (s for s in info.get("streams", []) if s.get("codec_type") == "video"),
            None,
        )
        if video_stream is None:
            raise ProbeError("No video stream found")

        fmt = info.get("format", {})
        try:
            metadata = MediaMetadata(
                duration_seconds=int(float(fmt.get("duration") or 0)),
                width=int(video_stream.get("width") or 0),
                height=int(video_stream.get("height") or 0),
                codec=video_stream.get("codec_name") or "unknown",
                bitrate=int(fmt.get("bit_rate") or 0),
            )
        except (TypeError, ValueError) as e:
            raise ProbeError("Could not parse video metadata") from e

        logger.info(
            "Probed video metadata",
            input_path=input_path,
            duration=metadata.duration_seconds,
            width=metadata.width,
            height=metadata.height,
            codec=metadata.codec,
        )
        return metadata

    def generate_thumbnail(
        self,
        input_path: str,
        output_path: str,
        capture_at_percent: int = 10,
        duration_seconds: Optional[int] = None,
    ):
        """
        Capture one frame at ``capture_at_percent`` of the duration as a 1280x720 JPEG.

        Args:
            input_path: Path to video file
            output_path: Where the JPEG is written
            capture_at_percent: Capture point as a percentage of the duration
            duration_seconds: Known duration; probed when omitted

        Raises:
            ThumbnailError: If the frame cannot be decoded or written
        """
        if duration_seconds is None:
            try:
                duration_seconds = self.probe_metadata(input_path).duration_seconds
            except ProbeError as e:
                raise ThumbnailError(f"Thumbnail probe failed: {e.message}") from e

        timestamp = max(duration_seconds, 0) * capture_at_percent / 100
        frame_path = f"{output_path}.frame.png"
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-ss", f"{timestamp:.3f}",
            "-i", input_path,
            "-frames:v", "1",
            "-y",
            frame_path,
        ]

        try:
            result = self._run(cmd)
        except OSError as e:
            raise ThumbnailError(f"Could not run ffmpeg: {e}") from e

        if result.returncode != 0 or not os.path.exists(frame_path):
            raise ThumbnailError(f"Frame extraction failed: {result.stderr.strip()}")

        try:
            with Image.open(frame_path) as frame:
                thumbnail = fit_thumbnail(frame.convert("RGB"))
            thumbnail.save(output_path, format="JPEG", quality=85)
        except (OSError, UnidentifiedImageError) as e:
            raise ThumbnailError(f"Could not write thumbnail: {e}") from e
        finally:
            if os.path.exists(frame_path):
                os.unlink(frame_path)

        logger.info("Generated thumbnail", output_path=output_path, at_seconds=round(timestamp, 3))

    def transcode_to_adaptive_hls(
        self,
        input_path: str,
        output_dir: str,
        resolutions: Sequence[int] = DEFAULT_RESOLUTIONS,
    ):
        """
        Produce one HLS rendition per resolution plus master.m3u8.

        Args:
            input_path: Path to video file
            output_dir: Directory that receives playlists and segments
            resolutions: Rendition heights

        Raises:
            TranscodeError: If any rendition pass fails; output_dir is then incomplete
        """
        Path(output_dir).mkdir(parents=True, exist_ok=True)

        for height in resolutions:
            self._transcode_rendition(input_path, output_dir, height)

        master_path = Path(output_dir) / MASTER_PLAYLIST
        try:
            master_path.write_text(build_master_playlist(resolutions))
        except OSError as e:
            raise TranscodeError(f"Could not write master playlist: {e}") from e

        logger.info("HLS transcoding complete", output_dir=output_dir, resolutions=list(resolutions))

    def build_rendition_command(self, input_path: str, output_dir: str, height: int) -> List[str]:
        """Build the ffmpeg command for a single HLS rendition."""
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-i", input_path,
            "-c:v", "libx264",
            "-c:a", "aac",
            "-b:v", f"{bitrate_kbps(height)}k",
            "-b:a", AUDIO_BITRATE,
            "-vf", f"scale=-2:{height}",
            "-profile:v", "main",
            "-preset", "fast",
            "-f", "hls",
            "-hls_time", str(self.segment_seconds),
            "-hls_playlist_type", "vod",
            "-hls_flags", "independent_segments",
            "-hls_segment_filename", os.path.join(output_dir, f"stream_{height}p_%03d.ts"),
            "-y",
            os.path.join(output_dir, rendition_playlist_name(height)),
        ]

    def _transcode_rendition(self, input_path: str, output_dir: str, height: int):
        cmd = self.build_rendition_command(input_path, output_dir, height)
        logger.info("Transcoding rendition", resolution=height, bitrate_kbps=bitrate_kbps(height))

        try:
            result = self._run(cmd)
        except OSError as e:
            raise TranscodeError(f"Could not run ffmpeg: {e}", resolution=height) from e

        if result.returncode != 0:
            logger.error("Rendition transcoding failed", resolution=height, stderr=result.stderr[-2000:])
            raise TranscodeError(
                f"HLS transcoding failed at {height}p: {result.stderr.strip()[-500:]}",
                resolution=height,
            )


def fit_thumbnail(frame: Image.Image, target_size=THUMBNAIL_SIZE) -> Image.Image:
    """
    Centre-crop a frame to the target aspect ratio and resize it.

    Args:
        frame: Decoded video frame
        target_size: (width, height) of the thumbnail

    Returns:
        Resized image
    """
    img_aspect = frame.width / frame.height
    target_aspect = target_size[0] / target_size[1]

    if img_aspect > target_aspect:
        # Image is wider than target, crop width
        new_width = int(frame.height * target_aspect)
        left = (frame.width - new_width) // 2
        frame = frame.crop((left, 0, left + new_width, frame.height))
    elif img_aspect < target_aspect:
        # Image is taller than target, crop height
        new_height = int(frame.width / target_aspect)
        top = (frame.height - new_height) // 2
        frame = frame.crop((0, top, frame.width, top + new_height))

    return frame.resize(target_size, Image.Resampling.LANCZOS)
