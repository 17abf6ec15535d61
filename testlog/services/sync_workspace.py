"""Primary/equipment selection and background offset detection for one test."""

import asyncio
import logging

from sqlalchemy.orm import Session

from testlog.exceptions import AssetNotFoundError, MissingPrimaryVideoError
from testlog.models.asset import MediaAsset
from testlog.models.base import utcnow
from testlog.models.enums import VideoRole
from testlog.models.pull_test import PullTest
from testlog.models.sync_configuration import SyncConfiguration
from testlog.services.audio_sync_service import AudioOffsetEstimator, SyncEstimate
from testlog.services.storage_service import ManagedStorageService
from testlog.utils.cancellation import CancellationToken, OperationCancelled

logger = logging.getLogger(__name__)


class SyncWorkspace:
    """Owns the sync configuration of a test while it is being edited.

    Detection runs in a worker thread; its result is written back on the
    event loop that started it. Cancelling leaves the configuration as is.
    """

    def __init__(
        self,
        db: Session,
        test: PullTest,
        estimator: AudioOffsetEstimator | None = None,
        storage: ManagedStorageService | None = None,
    ):
        self.db = db
        self.test = test
        self.estimator = estimator or AudioOffsetEstimator()
        self.storage = storage or ManagedStorageService()
        self._task: asyncio.Task | None = None
        self._token: CancellationToken | None = None

    @property
    def config(self) -> SyncConfiguration:
        return self.test.ensure_sync_configuration()

    @property
    def is_detecting(self) -> bool:
        return self._task is not None and not self._task.done()

    def _video(self, asset_id: str | None) -> MediaAsset | None:
        if asset_id is None:
            return None
        return next((a for a in self.test.video_assets if a.id == asset_id), None)

    def select_default_assets(self) -> None:
        """Fill empty selections from the role holders, else from video order."""
        videos = self.test.video_assets
        config = self.config
        if self._video(config.primary_asset_id) is None:
            primary = next((v for v in videos if v.video_role == VideoRole.ANCHOR_VIEW), None)
            if primary is None and videos:
                primary = videos[0]
            config.primary_asset_id = primary.id if primary else None
        if self._video(config.equipment_asset_id) is None:
            equipment = next((v for v in videos if v.video_role == VideoRole.EQUIPMENT_VIEW), None)
            if equipment is None:
                equipment = next((v for v in videos if v.id != config.primary_asset_id), None)
            config.equipment_asset_id = equipment.id if equipment else None

    def select_primary(self, asset_id: str) -> None:
        if self._video(asset_id) is None:
            raise AssetNotFoundError(asset_id)
        self.config.primary_asset_id = asset_id

    def select_equipment(self, asset_id: str | None) -> None:
        if asset_id is not None and self._video(asset_id) is None:
            raise AssetNotFoundError(asset_id)
        self.config.equipment_asset_id = asset_id

    def tester_sample_time(self, primary_time: float) -> float:
        """Tester-data time shown at ``primary_time`` of the primary video."""
        config = self.config
        return primary_time + config.effective_offset + (config.tester_data_offset_seconds or 0.0)

    def start_detection(self) -> asyncio.Task:
        """Start offset detection in the background, replacing a running one."""
        self.cancel()
        primary = self._video(self.config.primary_asset_id)
        equipment = self._video(self.config.equipment_asset_id)
        if primary is None or equipment is None:
            raise MissingPrimaryVideoError("Select both a primary and an equipment video to sync.")

        token = CancellationToken()
        self._token = token
        self._task = asyncio.create_task(
            self._detect(
                self.storage.absolute_path(primary.relative_path),
                self.storage.absolute_path(equipment.relative_path),
                token,
            )
        )
        return self._task

    def cancel(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._token = None

    async def _detect(self, primary_path, equipment_path, token: CancellationToken) -> SyncEstimate | None:
        logger.info("[SYNC] Detecting offset for %s", self.test.test_id or self.test.id)
        try:
            estimate = await self.estimator.detect_offset(primary_path, equipment_path, token)
        except OperationCancelled:
            logger.info("[SYNC] Detection cancelled")
            return None
        if token.cancelled:
            return None
        self.apply_estimate(estimate)
        return estimate

    def apply_estimate(self, estimate: SyncEstimate) -> None:
        config = self.config
        config.auto_offset_seconds = estimate.offset_seconds
        config.auto_offset_confidence = estimate.confidence
        config.last_synced_at = utcnow()
        self.db.commit()
        logger.info(
            "[SYNC] Applied offset %.3fs (%s, confidence %.2f)",
            estimate.offset_seconds,
            estimate.method.value,
            estimate.confidence,
        )
