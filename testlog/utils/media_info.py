"""Media file information utilities using FFprobe."""

import json
import subprocess
from dataclasses import dataclass
from datetime import datetime

from testlog.config import get_settings


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass
class MediaInfo:
    """Media file information."""

    duration_seconds: float | None = None
    width: int | None = None
    height: int | None = None
    rotation: int = 0  # clockwise display rotation in degrees
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    has_video: bool = False
    has_audio: bool = False
    creation_time: datetime | None = None

    @property
    def display_width(self) -> int | None:
        return self.height if self.rotation in (90, 270) else self.width

    @property
    def display_height(self) -> int | None:
        return self.width if self.rotation in (90, 270) else self.height


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise RuntimeError(f"ffprobe could not be started: {e}")
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def _parse_rate(rate: str | None) -> float | None:
    if not rate or "/" not in rate:
        return None
    num, den = rate.split("/", 1)
    try:
        num_f, den_f = float(num), float(den)
    except ValueError:
        return None
    if den_f <= 0 or num_f <= 0:
        return None
    return num_f / den_f


def _parse_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _stream_rotation(stream: dict) -> int:
    """Clockwise display rotation from the display matrix or legacy rotate tag."""
    for side_data in stream.get("side_data_list", []):
        rotation = _parse_float(side_data.get("rotation"))
        if rotation is not None:
            # Display matrix rotation is counter-clockwise
            return int(-round(rotation)) % 360
    rotate = _parse_float(stream.get("tags", {}).get("rotate"))
    if rotate is not None:
        return int(round(rotate)) % 360
    return 0


def _parse_creation_time(tags: dict) -> datetime | None:
    value = tags.get("creation_time")
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_media_info(data: dict) -> MediaInfo:
    """Build MediaInfo from ``ffprobe -show_format -show_streams`` JSON."""
    info = MediaInfo()
    format_info = data.get("format", {})
    info.creation_time = _parse_creation_time(format_info.get("tags", {}))

    video_duration = None
    stream_durations = []
    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")
        duration = _parse_float(stream.get("duration"))
        if duration:
            stream_durations.append(duration)

        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")
            info.rotation = _stream_rotation(stream)
            info.fps = _parse_rate(stream.get("avg_frame_rate")) or _parse_rate(
                stream.get("r_frame_rate")
            )
            video_duration = duration
            if info.creation_time is None:
                info.creation_time = _parse_creation_time(stream.get("tags", {}))

        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")
            info.sample_rate = _parse_int(stream.get("sample_rate")) or None
            info.channels = stream.get("channels")

    # Container duration is unreliable for very short or damaged files
    format_duration = _parse_float(format_info.get("duration"))
    if format_duration and format_duration > 1.0:
        info.duration_seconds = format_duration
    elif video_duration:
        info.duration_seconds = video_duration
    elif stream_durations:
        info.duration_seconds = max(stream_durations)
    else:
        info.duration_seconds = format_duration

    return info


def get_media_info(file_path: str) -> MediaInfo:
    """
    Get complete media file information.

    Args:
        file_path: Path to media file

    Returns:
        MediaInfo for the first video and first audio stream

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = _run_ffprobe(str(file_path), "-show_format", "-show_streams")
    return parse_media_info(data)


def get_audio_info(file_path: str) -> dict | None:
    """
    Get audio stream information.

    Args:
        file_path: Path to media file

    Returns:
        Dictionary with codec, sample_rate, channels, or None if no audio
    """
    try:
        data = _run_ffprobe(str(file_path), "-show_streams", "-select_streams", "a")
    except RuntimeError:
        return None

    streams = data.get("streams", [])
    if not streams:
        return None

    stream = streams[0]
    return {
        "codec": stream.get("codec_name"),
        "sample_rate": _parse_int(stream.get("sample_rate")) or None,
        "channels": stream.get("channels"),
    }
