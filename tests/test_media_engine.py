"""Tests for the ffmpeg-backed media engine (subprocess calls are faked)."""

import json
import subprocess
from pathlib import Path

import pytest
from PIL import Image

from pawfeed.errors import ProbeError, ThumbnailError, TranscodeError
from pawfeed.media import engine as media_engine
from pawfeed.media.engine import (
    FFmpegEngine,
    bitrate_kbps,
    build_master_playlist,
    fit_thumbnail,
    rendition_width,
    resolutions_for_source,
    segment_name,
)

FFPROBE_OUTPUT = {
    "streams": [
        {"codec_type": "audio", "codec_name": "aac"},
        {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080},
    ],
    "format": {"duration": "42.37", "bit_rate": "5000000"},
}


def completed(cmd, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


class RecordedCommands(list):
    """Commands passed to subprocess.run; ``handler`` builds each result."""


@pytest.fixture
def runner(monkeypatch):
    recorded = RecordedCommands()
    recorded.handler = lambda cmd: completed(cmd)

    def fake_run(cmd, capture_output=True, text=True):
        recorded.append(cmd)
        return recorded.handler(cmd)

    monkeypatch.setattr(media_engine.subprocess, "run", fake_run)
    return recorded


def test_probe_metadata_reads_video_stream(runner):
    runner.handler = lambda cmd: completed(cmd, stdout=json.dumps(FFPROBE_OUTPUT))

    metadata = FFmpegEngine(ffprobe_path="/usr/bin/ffprobe").probe_metadata("in.mp4")

    assert metadata.duration_seconds == 42
    assert (metadata.width, metadata.height) == (1920, 1080)
    assert metadata.codec == "h264"
    assert metadata.bitrate == 5000000
    assert runner[0][0] == "/usr/bin/ffprobe"
    assert runner[0][-1] == "in.mp4"


def test_probe_metadata_rejects_unreadable_file(runner):
    runner.handler = lambda cmd: completed(cmd, returncode=1, stderr="moov atom not found")

    with pytest.raises(ProbeError) as exc_info:
        FFmpegEngine().probe_metadata("broken.mp4")

    assert "moov atom not found" in exc_info.value.message


def test_probe_metadata_requires_video_stream(runner):
    audio_only = {"streams": [{"codec_type": "audio"}], "format": {"duration": "3"}}
    runner.handler = lambda cmd: completed(cmd, stdout=json.dumps(audio_only))

    with pytest.raises(ProbeError, match="No video stream"):
        FFmpegEngine().probe_metadata("song.m4a")


def test_probe_metadata_wraps_missing_binary(monkeypatch):
    def missing(cmd, capture_output=True, text=True):
        raise FileNotFoundError("ffprobe")

    monkeypatch.setattr(media_engine.subprocess, "run", missing)

    with pytest.raises(ProbeError):
        FFmpegEngine().probe_metadata("in.mp4")


def test_resolutions_for_source_drops_upscaled_rungs():
    assert resolutions_for_source(1080) == [360, 480, 720]
    assert resolutions_for_source(720) == [360, 480, 720]
    assert resolutions_for_source(480) == [360, 480]
    assert resolutions_for_source(240) == [360]
    assert resolutions_for_source(1080, [720, 360, 1080]) == [360, 720, 1080]


def test_master_playlist_lists_every_rendition():
    playlist = build_master_playlist([360, 480, 720])

    assert playlist == (
        "#EXTM3U\n"
        "#EXT-X-VERSION:3\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360\n"
        "stream_360p.m3u8\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=1400000,RESOLUTION=854x480\n"
        "stream_480p.m3u8\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=2800000,RESOLUTION=1280x720\n"
        "stream_720p.m3u8\n"
    )


def test_rendition_helpers():
    assert bitrate_kbps(720) == 2800
    assert bitrate_kbps(1000) == 1400
    assert rendition_width(1080) == 1920
    assert segment_name(480, 7) == "stream_480p_007.ts"


def test_rendition_command_flags(tmp_path):
    cmd = FFmpegEngine(segment_seconds=4).build_rendition_command("in.mp4", str(tmp_path), 480)

    assert cmd[cmd.index("-b:v") + 1] == "1400k"
    assert cmd[cmd.index("-vf") + 1] == "scale=-2:480"
    assert cmd[cmd.index("-hls_time") + 1] == "4"
    assert cmd[cmd.index("-hls_playlist_type") + 1] == "vod"
    assert cmd[cmd.index("-hls_segment_filename") + 1] == str(tmp_path / "stream_480p_%03d.ts")
    assert cmd[-1] == str(tmp_path / "stream_480p.m3u8")


def test_transcode_writes_master_playlist(runner, tmp_path):
    output_dir = tmp_path / "hls"

    FFmpegEngine().transcode_to_adaptive_hls("in.mp4", str(output_dir), [360, 720])

    assert len(runner) == 2
    assert (output_dir / "master.m3u8").read_text() == build_master_playlist([360, 720])


def test_transcode_failure_reports_resolution(runner, tmp_path):
    def fail_480(cmd):
        if "scale=-2:480" in cmd:
            return completed(cmd, returncode=1, stderr="encoder error")
        return completed(cmd)

    runner.handler = fail_480

    with pytest.raises(TranscodeError) as exc_info:
        FFmpegEngine().transcode_to_adaptive_hls("in.mp4", str(tmp_path / "hls"), [360, 480, 720])

    assert exc_info.value.resolution == 480
    assert "480p" in exc_info.value.message
    # Stops at the failing rendition
    assert len(runner) == 2
    assert not (tmp_path / "hls" / "master.m3u8").exists()


def test_generate_thumbnail_crops_to_720p(runner, tmp_path):
    def write_frame(cmd):
        Image.new("RGB", (1920, 1200), color=(200, 120, 40)).save(cmd[-1], format="PNG")
        return completed(cmd)

    runner.handler = write_frame
    output = tmp_path / "thumb.jpg"

    FFmpegEngine().generate_thumbnail("in.mp4", str(output), capture_at_percent=10, duration_seconds=42)

    cmd = runner[0]
    assert cmd[cmd.index("-ss") + 1] == "4.200"
    with Image.open(output) as thumb:
        assert thumb.size == (1280, 720)
        assert thumb.format == "JPEG"
    assert not Path(f"{output}.frame.png").exists()


def test_generate_thumbnail_failure(runner, tmp_path):
    runner.handler = lambda cmd: completed(cmd, returncode=1, stderr="decode error")

    with pytest.raises(ThumbnailError):
        FFmpegEngine().generate_thumbnail("in.mp4", str(tmp_path / "thumb.jpg"), duration_seconds=10)


def test_fit_thumbnail_tall_frame():
    frame = Image.new("RGB", (720, 1280))

    assert fit_thumbnail(frame).size == (1280, 720)
