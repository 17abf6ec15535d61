"""Tests for ffprobe output parsing and media probing."""

import subprocess
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from conftest import requires_ffmpeg
from testlog.exceptions import AssetNotReadableError
from testlog.models.enums import AssetType
from testlog.services.metadata_probe import MetadataProbe
from testlog.utils.hashing import ContentHasher
from testlog.utils.media_info import MediaInfo, get_audio_info, get_media_info, parse_media_info


def _probe_output(**video_overrides) -> dict:
    video = {
        "codec_type": "video",
        "codec_name": "h264",
        "width": 1920,
        "height": 1080,
        "avg_frame_rate": "30000/1001",
        "r_frame_rate": "30/1",
        "duration": "12.5",
    }
    video.update(video_overrides)
    return {
        "format": {"duration": "12.533", "tags": {"creation_time": "2024-05-01T12:00:00.000000Z"}},
        "streams": [
            video,
            {
                "codec_type": "audio",
                "codec_name": "aac",
                "sample_rate": "48000",
                "channels": 2,
                "duration": "12.533",
            },
        ],
    }


class TestParseMediaInfo:
    """Tests for parse_media_info."""

    def test_basic_fields(self):
        """Test parsing video and audio fields."""
        info = parse_media_info(_probe_output())

        assert info.has_video and info.has_audio
        assert (info.width, info.height) == (1920, 1080)
        assert info.fps == pytest.approx(29.97, abs=0.01)
        assert info.duration_seconds == pytest.approx(12.533)
        assert info.sample_rate == 48000
        assert info.channels == 2
        assert info.creation_time == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_display_matrix_rotation(self):
        """Test rotation from the display matrix."""
        data = _probe_output(side_data_list=[{"side_data_type": "Display Matrix", "rotation": -90}])
        info = parse_media_info(data)

        assert info.rotation == 90
        assert (info.display_width, info.display_height) == (1080, 1920)

    def test_legacy_rotate_tag(self):
        """Test rotation from the legacy rotate tag."""
        info = parse_media_info(_probe_output(tags={"rotate": "270"}))
        assert info.rotation == 270
        assert info.display_width == 1080

    def test_frame_rate_fallback(self):
        """Test falling back to r_frame_rate."""
        info = parse_media_info(_probe_output(avg_frame_rate="0/0"))
        assert info.fps == pytest.approx(30.0)

    def test_short_container_uses_video_duration(self):
        """Test duration of very short files."""
        data = _probe_output(duration="0.8")
        data["format"]["duration"] = "0.5"
        assert parse_media_info(data).duration_seconds == pytest.approx(0.8)

    def test_audio_only(self):
        """Test an audio-only file."""
        data = _probe_output()
        data["streams"] = data["streams"][1:]
        info = parse_media_info(data)

        assert not info.has_video
        assert info.display_width is None

    def test_unparseable_sample_rate(self):
        """Test non-numeric sample rate and rotation values."""
        data = _probe_output(tags={"rotate": "N/A"})
        data["streams"][1]["sample_rate"] = "N/A"
        info = parse_media_info(data)

        assert info.has_audio
        assert info.sample_rate is None
        assert info.rotation == 0


class TestFfprobeCalls:
    """Tests for the ffprobe subprocess boundary."""

    def test_failed_probe_raises(self):
        """Test that a failed probe raises."""
        failed = MagicMock(returncode=1, stdout="", stderr="Invalid data")
        with patch("testlog.utils.media_info.subprocess.run", return_value=failed):
            with pytest.raises(RuntimeError):
                get_media_info("broken.mov")

    def test_missing_binary_raises(self):
        """Test a missing ffprobe binary."""
        with patch("testlog.utils.media_info.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(RuntimeError):
                get_media_info("clip.mov")

    def test_audio_info_none_on_failure(self):
        """Test audio info when ffprobe fails."""
        failed = MagicMock(returncode=1, stdout="", stderr="Invalid data")
        with patch("testlog.utils.media_info.subprocess.run", return_value=failed):
            assert get_audio_info("broken.mov") is None

    def test_audio_info_unparseable_sample_rate(self):
        """Test audio info with a non-numeric sample rate."""
        data = {"streams": [{"codec_name": "aac", "sample_rate": "N/A", "channels": 2}]}
        with patch("testlog.utils.media_info._run_ffprobe", return_value=data):
            audio = get_audio_info("clip.mov")

        assert audio["sample_rate"] is None
        assert audio["channels"] == 2


class TestMetadataProbe:
    """Tests for MetadataProbe."""

    def test_non_video_file(self, tmp_path):
        """Test probing a non-video file."""
        path = tmp_path / "run.lby"
        path.write_bytes(b"\x00" * 64)

        metadata = MetadataProbe().probe(path, AssetType.TESTER_DATA)

        assert metadata.byte_size == 64
        assert metadata.checksum_sha256 == ContentHasher().hash_file(path)
        assert metadata.content_type == "application/octet-stream"
        assert metadata.duration_seconds is None

    def test_video_dimensions_in_display_orientation(self, tmp_path):
        """Test that dimensions are stored in display orientation."""
        path = tmp_path / "clip.mov"
        path.write_bytes(b"fake")
        info = MediaInfo(
            duration_seconds=4.0, width=1920, height=1080, rotation=90, fps=30.0, has_video=True
        )
        with patch("testlog.services.metadata_probe.get_media_info", return_value=info):
            metadata = MetadataProbe().probe(path, AssetType.VIDEO)

        assert (metadata.pixel_width, metadata.pixel_height) == (1080, 1920)
        assert metadata.frame_rate == 30.0
        assert metadata.duration_seconds == 4.0

    def test_unreadable_video(self, tmp_path):
        """Test probing an unreadable video."""
        path = tmp_path / "clip.mov"
        path.write_bytes(b"fake")
        with patch(
            "testlog.services.metadata_probe.get_media_info", side_effect=RuntimeError("bad")
        ):
            with pytest.raises(AssetNotReadableError):
                MetadataProbe().probe(path, AssetType.VIDEO)

    def test_video_without_video_track(self, tmp_path):
        """Test a video file without a video track."""
        path = tmp_path / "clip.mov"
        path.write_bytes(b"fake")
        with patch(
            "testlog.services.metadata_probe.get_media_info",
            return_value=MediaInfo(has_audio=True),
        ):
            with pytest.raises(AssetNotReadableError):
                MetadataProbe().probe(path, AssetType.VIDEO)

    def test_missing_file(self, tmp_path):
        """Test probing a missing file."""
        with pytest.raises(AssetNotReadableError):
            MetadataProbe().probe(tmp_path / "missing.mov", AssetType.VIDEO)


@requires_ffmpeg
class TestRealProbe:
    """Probe a clip generated with ffmpeg."""

    def test_generated_clip(self, tmp_path):
        """Test probing a generated clip."""
        path = tmp_path / "tone.mp4"
        subprocess.run(
            [
                "ffmpeg", "-v", "error", "-y",
                "-f", "lavfi", "-i", "testsrc=size=320x240:rate=25:duration=2",
                "-f", "lavfi", "-i", "sine=frequency=1000:duration=2",
                "-shortest", "-pix_fmt", "yuv420p",
                str(path),
            ],
            check=True,
        )

        info = get_media_info(str(path))
        assert (info.width, info.height) == (320, 240)
        assert info.fps == pytest.approx(25.0)
        assert info.duration_seconds == pytest.approx(2.0, abs=0.1)
        assert get_audio_info(str(path))["sample_rate"] is not None
