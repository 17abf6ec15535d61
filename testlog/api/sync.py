import logging

from fastapi import APIRouter

from testlog.api.deps import CurrentTest, DbSession, Storage
from testlog.exceptions import TestLogError
from testlog.models.sync_configuration import SyncConfiguration
from testlog.render.geometry import Rect
from testlog.schemas.sync import (
    CropRect,
    SyncConfigurationResponse,
    SyncConfigurationUpdate,
    SyncDetectionResponse,
)
from testlog.services.export_service import ExportService
from testlog.services.sync_workspace import SyncWorkspace

logger = logging.getLogger(__name__)

router = APIRouter()


def _sync_response(config: SyncConfiguration) -> SyncConfigurationResponse:
    crop = config.equipment_crop
    return SyncConfigurationResponse(
        primary_asset_id=config.primary_asset_id,
        equipment_asset_id=config.equipment_asset_id,
        auto_offset_seconds=config.auto_offset_seconds,
        auto_offset_confidence=config.auto_offset_confidence,
        manual_offset_seconds=config.manual_offset_seconds,
        effective_offset=config.effective_offset,
        trim_in_seconds=config.trim_in_seconds,
        trim_out_seconds=config.trim_out_seconds,
        tester_data_offset_seconds=config.tester_data_offset_seconds,
        equipment_rotation_quarter_turns=config.equipment_rotation_quarter_turns,
        equipment_crop=CropRect(x=crop.x, y=crop.y, width=crop.width, height=crop.height),
        last_synced_at=config.last_synced_at,
    )


@router.get("/{test_id}/sync", response_model=SyncConfigurationResponse)
def get_sync(test: CurrentTest, db: DbSession, storage: Storage):
    workspace = SyncWorkspace(db, test, storage=storage)
    workspace.select_default_assets()
    db.commit()
    return _sync_response(workspace.config)


@router.put("/{test_id}/sync", response_model=SyncConfigurationResponse)
def update_sync(data: SyncConfigurationUpdate, test: CurrentTest, db: DbSession, storage: Storage):
    workspace = SyncWorkspace(db, test, storage=storage)
    config = workspace.config
    fields = data.model_fields_set

    if "primary_asset_id" in fields:
        if data.primary_asset_id is None:
            config.primary_asset_id = None
        else:
            workspace.select_primary(data.primary_asset_id)
    if "equipment_asset_id" in fields:
        workspace.select_equipment(data.equipment_asset_id)
    if "manual_offset_seconds" in fields and data.manual_offset_seconds is not None:
        config.manual_offset_seconds = data.manual_offset_seconds
    if "tester_data_offset_seconds" in fields and data.tester_data_offset_seconds is not None:
        config.tester_data_offset_seconds = data.tester_data_offset_seconds
    if "equipment_rotation_quarter_turns" in fields and data.equipment_rotation_quarter_turns is not None:
        config.equipment_rotation_quarter_turns = data.equipment_rotation_quarter_turns
    if "equipment_crop" in fields and data.equipment_crop is not None:
        crop = data.equipment_crop
        config.equipment_crop = Rect(crop.x, crop.y, crop.width, crop.height)
    if fields & {"trim_in_seconds", "trim_out_seconds"}:
        trim_in = data.trim_in_seconds if "trim_in_seconds" in fields else config.trim_in_seconds
        trim_out = data.trim_out_seconds if "trim_out_seconds" in fields else config.trim_out_seconds
        config.set_trim(trim_in, trim_out)

    db.commit()
    return _sync_response(config)


@router.post("/{test_id}/sync/detect", response_model=SyncDetectionResponse)
async def detect_offset(test: CurrentTest, db: DbSession, storage: Storage):
    """Run audio offset detection and store the result as the automatic offset."""
    workspace = SyncWorkspace(db, test, storage=storage)
    workspace.select_default_assets()
    estimate = await workspace.start_detection()
    if estimate is None:
        raise TestLogError("Offset detection was cancelled", status_code=409)
    return SyncDetectionResponse(**estimate.to_dict(), sync=_sync_response(workspace.config))


@router.post("/{test_id}/sync/plan")
def plan_composition(test: CurrentTest, storage: Storage) -> dict:
    """Composition plan for the current sync configuration, without rendering it."""
    service = ExportService(storage=storage)
    return service.build_plan(test).to_dict()
