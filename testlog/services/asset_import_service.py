"""Import of user-picked files into a test's managed storage.

A batch is validated as a whole before anything is copied. Files are then
processed one at a time: copy, probe and decode run in a worker thread, and
the resulting record is attached to the test and committed on the calling
coroutine before the next file starts.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from testlog.exceptions import AssetNotReadableError
from testlog.models.asset import MediaAsset
from testlog.models.base import new_id
from testlog.models.enums import AssetType, VideoRole, suggest_video_role
from testlog.models.pull_test import PullTest
from testlog.services.asset_classifier import infer_asset_type
from testlog.services.asset_validator import AssetValidator, ImportCandidate
from testlog.services.metadata_probe import AssetMetadata, MetadataProbe
from testlog.services.storage_service import ManagedStorageService
from testlog.services.tester_data_parser import TesterDataParser, peak_force_lbs

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class ProcessedFile:
    asset_id: str
    relative_path: str
    metadata: AssetMetadata
    peak_force_lbs: float | None = None


class AssetImportPipeline:
    def __init__(
        self,
        storage: ManagedStorageService | None = None,
        validator: AssetValidator | None = None,
        probe: MetadataProbe | None = None,
        parser: TesterDataParser | None = None,
    ):
        self.storage = storage or ManagedStorageService()
        self.validator = validator or AssetValidator()
        self.probe = probe or MetadataProbe()
        self.parser = parser or TesterDataParser()

    def build_candidates(
        self, paths: Iterable[str | Path], existing_assets: Iterable[MediaAsset] = ()
    ) -> list[ImportCandidate]:
        """Candidates with suggested kinds; new videos get the first unclaimed role."""
        claimed = {
            VideoRole(a.video_role).value
            for a in existing_assets
            if a.asset_type == AssetType.VIDEO and a.video_role
        }
        candidates = []
        for raw_path in paths:
            path = Path(raw_path)
            asset_type = infer_asset_type(path.name)
            role = VideoRole.UNASSIGNED
            if asset_type == AssetType.VIDEO:
                role = suggest_video_role(claimed)
                claimed.add(role.value)
            candidates.append(
                ImportCandidate(
                    source_path=path,
                    suggested_type=asset_type,
                    selected_type=asset_type,
                    selected_role=role,
                )
            )
        return candidates

    def validate(
        self, candidates: Sequence[ImportCandidate], existing_assets: Iterable[MediaAsset]
    ) -> None:
        self.validator.validate(candidates, existing_assets)

    async def import_candidates(
        self,
        db: Session,
        test: PullTest,
        candidates: Sequence[ImportCandidate],
        progress: ProgressCallback | None = None,
    ) -> list[MediaAsset]:
        """Validate the batch, then import each file in order.

        Every imported file is committed before the next one starts, so a
        failure leaves the already imported prefix in place and raises.
        """
        self.validate(candidates, test.assets)

        storage_key = test.storage_key
        total = len(candidates)
        imported: list[MediaAsset] = []
        for index, candidate in enumerate(candidates, start=1):
            if progress is not None:
                progress(index, total, candidate.filename)
            logger.info("[IMPORT] Importing %d of %d: %s", index, total, candidate.filename)

            processed = await asyncio.to_thread(self._process_candidate, candidate, storage_key)
            asset = self._apply(test, candidate, processed)
            db.commit()
            imported.append(asset)

        logger.info("[IMPORT] Imported %d file(s) into %s", len(imported), storage_key)
        return imported

    def _process_candidate(self, candidate: ImportCandidate, storage_key: str) -> ProcessedFile:
        asset_id = new_id()
        relative = self.storage.copy_into_storage(candidate.source_path, storage_key, asset_id)
        stored_path = self.storage.absolute_path(relative)
        try:
            metadata = self.probe.probe(stored_path, candidate.selected_type)
            peak = None
            if candidate.selected_type == AssetType.TESTER_DATA:
                peak = peak_force_lbs(self.parser.parse_file(stored_path))
        except OSError as e:
            self.storage.delete_file(relative)
            raise AssetNotReadableError(f"Could not read {candidate.filename}: {e}")
        except Exception:
            self.storage.delete_file(relative)
            raise
        return ProcessedFile(asset_id, relative, metadata, peak)

    def _apply(self, test: PullTest, candidate: ImportCandidate, processed: ProcessedFile) -> MediaAsset:
        metadata = processed.metadata
        is_video = candidate.selected_type == AssetType.VIDEO
        asset = MediaAsset(
            id=processed.asset_id,
            pull_test_id=test.id,
            asset_type=AssetType(candidate.selected_type).value,
            filename=candidate.filename,
            relative_path=processed.relative_path,
            created_at=metadata.created_at,
            byte_size=metadata.byte_size,
            content_type=metadata.content_type,
            checksum_sha256=metadata.checksum_sha256,
            is_managed_copy=True,
            duration_seconds=metadata.duration_seconds,
            frame_rate=metadata.frame_rate,
            pixel_width=metadata.pixel_width,
            pixel_height=metadata.pixel_height,
            video_role=VideoRole(candidate.selected_role).value if is_video else None,
        )
        test.assets.append(asset)

        if candidate.selected_type == AssetType.TESTER_DATA:
            if processed.peak_force_lbs is not None:
                test.upsert_tester_max_measurement(processed.peak_force_lbs)
                logger.info("[IMPORT] Tester peak %.1f lbf", processed.peak_force_lbs)
            else:
                test.remove_tester_max_measurement()
        return asset

    def remove_asset(self, db: Session, test: PullTest, asset: MediaAsset) -> None:
        """Delete an asset record, its file when unreferenced, and dependent state."""
        all_assets = db.scalars(select(MediaAsset)).all()
        self.storage.remove_managed_file_if_unreferenced(asset, all_assets)

        config = test.sync_configuration
        if config is not None:
            if config.primary_asset_id == asset.id:
                config.primary_asset_id = None
            if config.equipment_asset_id == asset.id:
                config.equipment_asset_id = None

        if asset.asset_type == AssetType.TESTER_DATA:
            test.remove_tester_max_measurement()

        if asset in test.assets:
            test.assets.remove(asset)
        db.delete(asset)
        db.commit()
        logger.info("[IMPORT] Removed asset %s (%s)", asset.id, asset.filename)
