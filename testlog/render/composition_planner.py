"""Composition plans for exporting a test video.

A plan is a complete, encoder-independent description of one export: the
trimmed primary source placed full frame, the optional equipment source as a
picture-in-picture inset shifted by the sync offset, and the overlay.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from testlog.config import Settings, get_settings
from testlog.exceptions import (
    AssetNotReadableError,
    InvalidTrimRangeError,
    TrimRangeRequiredError,
)
from testlog.models.asset import MediaAsset
from testlog.models.pull_test import PullTest
from testlog.models.sync_configuration import SyncConfiguration
from testlog.render.geometry import (
    AffineTransform,
    ContentMode,
    Placement,
    Rect,
    Size,
    resolve_placement,
)
from testlog.render.overlay_builder import OverlayBuilder, OverlayPlan
from testlog.services.storage_service import ManagedStorageService
from testlog.services.tester_data_parser import ForceSample
from testlog.utils.media_info import get_media_info

logger = logging.getLogger(__name__)

PIP_SCALE = 0.30
PIP_LEFT_MARGIN = 24
PIP_BOTTOM_MARGIN = 32


@dataclass
class SourceTrack:
    """One video source with its trim window and placement in the output frame."""

    name: str  # "primary" or "equipment"
    asset_id: str
    path: Path
    source_start: float
    duration: float
    destination: Rect
    content_mode: ContentMode
    placement: Placement
    include_audio: bool = False

    @property
    def transform(self) -> AffineTransform:
        return self.placement.transform

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "asset_id": self.asset_id,
            "path": str(self.path),
            "source_start": self.source_start,
            "duration": self.duration,
            "destination": self.destination.to_dict(),
            "content_mode": self.content_mode.value,
            "placement": self.placement.to_dict(),
            "include_audio": self.include_audio,
        }


@dataclass
class CompositionPlan:
    render_size: Size
    frame_rate: int
    trim_in: float
    trim_out: float
    tracks: list[SourceTrack] = field(default_factory=list)  # bottom to top
    overlay: OverlayPlan | None = None

    @property
    def duration(self) -> float:
        return self.trim_out - self.trim_in

    @property
    def primary(self) -> SourceTrack:
        return self.tracks[0]

    @property
    def equipment(self) -> SourceTrack | None:
        return self.tracks[1] if len(self.tracks) > 1 else None

    def to_dict(self) -> dict:
        return {
            "render_size": [self.render_size.width, self.render_size.height],
            "frame_rate": self.frame_rate,
            "trim_in": self.trim_in,
            "trim_out": self.trim_out,
            "duration": self.duration,
            "tracks": [t.to_dict() for t in self.tracks],
            "overlay": self.overlay.to_dict() if self.overlay else None,
        }


def pip_rect(render_size: Size) -> Rect:
    """Bottom-left inset at 30% of the output size."""
    width = render_size.width * PIP_SCALE
    height = render_size.height * PIP_SCALE
    return Rect(PIP_LEFT_MARGIN, render_size.height - height - PIP_BOTTOM_MARGIN, width, height)


class CompositionPlanner:
    def __init__(
        self,
        storage: ManagedStorageService | None = None,
        overlay_builder: OverlayBuilder | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or ManagedStorageService()
        self.overlay_builder = overlay_builder or OverlayBuilder()

    def plan(
        self,
        test: PullTest,
        primary: MediaAsset,
        equipment: MediaAsset | None,
        config: SyncConfiguration,
        force_samples: list[ForceSample] | None = None,
        render_size: Size | None = None,
        frame_rate: int | None = None,
    ) -> CompositionPlan:
        trim_in, trim_out = config.trim_in_seconds, config.trim_out_seconds
        if trim_in is None or trim_out is None:
            raise TrimRangeRequiredError()
        if trim_out <= trim_in:
            raise InvalidTrimRangeError(trim_in, trim_out)

        render_size = render_size or Size(self.settings.render_width, self.settings.render_height)
        frame_rate = frame_rate or self.settings.render_fps
        duration = trim_out - trim_in
        full_frame = Rect(0, 0, render_size.width, render_size.height)

        plan = CompositionPlan(
            render_size=render_size,
            frame_rate=frame_rate,
            trim_in=trim_in,
            trim_out=trim_out,
        )
        plan.tracks.append(
            self._track(
                "primary",
                primary,
                source_start=trim_in,
                duration=duration,
                destination=full_frame,
                content_mode=ContentMode.FILL,
                include_audio=True,
            )
        )

        if equipment is not None:
            plan.tracks.append(
                self._track(
                    "equipment",
                    equipment,
                    source_start=max(0.0, trim_in + config.effective_offset),
                    duration=duration,
                    destination=pip_rect(render_size),
                    content_mode=ContentMode.FIT_LEADING,
                    quarter_turns=config.equipment_rotation_quarter_turns,
                    crop=config.equipment_crop,
                )
            )

        plan.overlay = self.overlay_builder.build(test, config, force_samples or [], render_size)
        logger.info(
            "[EXPORT] Planned %s: %.2fs-%.2fs, %d track(s)",
            test.test_id or test.id,
            trim_in,
            trim_out,
            len(plan.tracks),
        )
        return plan

    def _track(
        self,
        name: str,
        asset: MediaAsset,
        source_start: float,
        duration: float,
        destination: Rect,
        content_mode: ContentMode,
        quarter_turns: int = 0,
        crop: Rect | None = None,
        include_audio: bool = False,
    ) -> SourceTrack:
        path = self.storage.absolute_path(asset.relative_path)
        size = self._source_size(asset, path)
        placement = resolve_placement(
            size, AffineTransform.identity(), destination, content_mode, quarter_turns, crop
        )
        if placement is None:
            raise AssetNotReadableError(f"Video {asset.filename} has no usable frame size")
        return SourceTrack(
            name=name,
            asset_id=asset.id,
            path=path,
            source_start=source_start,
            duration=duration,
            destination=destination,
            content_mode=content_mode,
            placement=placement,
            include_audio=include_audio,
        )

    @staticmethod
    def _source_size(asset: MediaAsset, path: Path) -> Size:
        """Upright frame size; stored dimensions already include display rotation."""
        if not path.is_file():
            raise AssetNotReadableError(f"Media file missing: {asset.relative_path}")
        if asset.pixel_width and asset.pixel_height:
            return Size(asset.pixel_width, asset.pixel_height)
        try:
            info = get_media_info(str(path))
        except RuntimeError:
            raise AssetNotReadableError(f"Could not read video {asset.filename}")
        if not info.display_width or not info.display_height:
            raise AssetNotReadableError(f"No video track in {asset.filename}")
        return Size(info.display_width, info.display_height)
