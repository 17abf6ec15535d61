import asyncio
import logging
from pathlib import Path

from testlog.exceptions import MissingPrimaryVideoError
from testlog.models.asset import MediaAsset
from testlog.models.pull_test import PullTest
from testlog.render.composition_planner import CompositionPlan, CompositionPlanner
from testlog.render.ffmpeg_exporter import FFmpegCompositionExporter
from testlog.services.storage_service import ManagedStorageService
from testlog.services.tester_data_parser import ForceSample, TesterDataParser

logger = logging.getLogger(__name__)


class ExportService:
    """Plans and renders the composed video for one test."""

    def __init__(
        self,
        storage: ManagedStorageService | None = None,
        planner: CompositionPlanner | None = None,
        exporter: FFmpegCompositionExporter | None = None,
        parser: TesterDataParser | None = None,
    ):
        self.storage = storage or ManagedStorageService()
        self.planner = planner or CompositionPlanner(storage=self.storage)
        self.exporter = exporter or FFmpegCompositionExporter()
        self.parser = parser or TesterDataParser()

    def resolve_sources(self, test: PullTest) -> tuple[MediaAsset, MediaAsset | None]:
        config = test.sync_configuration
        videos = {asset.id: asset for asset in test.video_assets}
        if config is None or config.primary_asset_id not in videos:
            raise MissingPrimaryVideoError()
        primary = videos[config.primary_asset_id]
        equipment = videos.get(config.equipment_asset_id) if config.equipment_asset_id else None
        if equipment is not None and equipment.id == primary.id:
            equipment = None
        return primary, equipment

    def load_force_samples(self, test: PullTest) -> list[ForceSample]:
        tester = test.tester_binary_asset
        if tester is None:
            return []
        try:
            return self.parser.parse_file(self.storage.absolute_path(tester.relative_path))
        except OSError as e:
            logger.warning("[EXPORT] Tester data unreadable, exporting without graph: %s", e)
            return []

    def build_plan(self, test: PullTest, force_samples: list[ForceSample] | None = None) -> CompositionPlan:
        primary, equipment = self.resolve_sources(test)
        if force_samples is None:
            force_samples = self.load_force_samples(test)
        return self.planner.plan(test, primary, equipment, test.sync_configuration, force_samples)

    async def export_test(self, test: PullTest, output_path: str | Path) -> Path:
        tester = test.tester_binary_asset
        samples: list[ForceSample] = []
        if tester is not None:
            samples = await asyncio.to_thread(self.load_force_samples, test)
        plan = self.build_plan(test, samples)
        return await self.exporter.export(plan, output_path)
