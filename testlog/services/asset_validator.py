from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from testlog.config import Settings, get_settings
from testlog.exceptions import (
    DuplicateVideoRoleError,
    FileTooLargeError,
    TooManyTesterFilesError,
    TooManyVideosError,
    UnsupportedFileTypeError,
)
from testlog.models.asset import MediaAsset
from testlog.models.enums import AssetType, VideoRole
from testlog.services.asset_classifier import VIDEO_EXTENSIONS, file_extension


@dataclass
class ImportCandidate:
    """A file picked for import, before it is copied into managed storage."""

    source_path: Path
    suggested_type: AssetType
    selected_type: AssetType
    selected_role: VideoRole = VideoRole.UNASSIGNED

    @property
    def filename(self) -> str:
        return self.source_path.name

    @property
    def extension(self) -> str:
        return file_extension(self.source_path.name)


class AssetValidator:
    """Import policy: video count, container type, size, roles and tester files."""

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.max_videos = settings.max_videos_per_test
        self.max_video_bytes = settings.max_video_bytes
        self.max_tester_files = settings.max_tester_files_per_test

    def validate(
        self, candidates: Iterable[ImportCandidate], existing_assets: Iterable[MediaAsset]
    ) -> None:
        """Raise the first policy violation for adding ``candidates`` to a test."""
        existing_assets = list(existing_assets)
        video_count = sum(1 for a in existing_assets if a.asset_type == AssetType.VIDEO)
        tester_count = sum(1 for a in existing_assets if a.asset_type == AssetType.TESTER_DATA)
        claimed_roles = {
            VideoRole(a.video_role).value
            for a in existing_assets
            if a.asset_type == AssetType.VIDEO
            and a.video_role
            and a.video_role != VideoRole.UNASSIGNED
        }

        for candidate in candidates:
            if candidate.selected_type == AssetType.VIDEO:
                if video_count + 1 > self.max_videos:
                    raise TooManyVideosError()
                if candidate.extension not in VIDEO_EXTENSIONS:
                    raise UnsupportedFileTypeError(candidate.extension)
                if self._byte_size(candidate.source_path) > self.max_video_bytes:
                    raise FileTooLargeError()

                role = VideoRole(candidate.selected_role)
                if role != VideoRole.UNASSIGNED:
                    if role.value in claimed_roles:
                        raise DuplicateVideoRoleError(role.value)
                    claimed_roles.add(role.value)
                video_count += 1

            elif candidate.selected_type == AssetType.TESTER_DATA:
                if tester_count + 1 > self.max_tester_files:
                    raise TooManyTesterFilesError()
                tester_count += 1

    @staticmethod
    def _byte_size(path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError:
            # Unreadable files fail later, when they are copied
            return 0
