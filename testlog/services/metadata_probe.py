import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from testlog.exceptions import AssetNotReadableError
from testlog.models.enums import AssetType
from testlog.services.asset_classifier import guess_content_type
from testlog.utils.hashing import ContentHasher
from testlog.utils.media_info import get_media_info

logger = logging.getLogger(__name__)


@dataclass
class AssetMetadata:
    byte_size: int
    content_type: str | None
    checksum_sha256: str | None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float | None = None
    frame_rate: float | None = None
    pixel_width: int | None = None
    pixel_height: int | None = None


def file_created_at(stat: os.stat_result) -> datetime:
    """Birth time where the platform records it, else modification time."""
    timestamp = getattr(stat, "st_birthtime", None) or stat.st_mtime
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class MetadataProbe:
    """Collects size, type, digest and video track facts for a stored file."""

    def __init__(self, hasher: ContentHasher | None = None):
        self.hasher = hasher or ContentHasher()

    def probe(self, path: str | Path, asset_type: AssetType) -> AssetMetadata:
        path = Path(path)
        try:
            stat = path.stat()
            checksum = self.hasher.hash_file(path)
        except OSError as e:
            raise AssetNotReadableError(f"Could not read {path.name}: {e}")

        metadata = AssetMetadata(
            byte_size=stat.st_size,
            content_type=guess_content_type(path.name),
            checksum_sha256=checksum,
            created_at=file_created_at(stat),
        )
        if asset_type == AssetType.VIDEO:
            self._probe_video(path, metadata)
        return metadata

    def _probe_video(self, path: Path, metadata: AssetMetadata) -> None:
        try:
            info = get_media_info(str(path))
        except RuntimeError as e:
            logger.warning("[IMPORT] ffprobe failed for %s: %s", path, e)
            raise AssetNotReadableError(f"Could not read video {path.name}")
        if not info.has_video:
            raise AssetNotReadableError(f"No video track in {path.name}")

        metadata.duration_seconds = info.duration_seconds
        metadata.frame_rate = info.fps
        metadata.pixel_width = info.display_width
        metadata.pixel_height = info.display_height
        if info.creation_time is not None:
            metadata.created_at = info.creation_time
