from datetime import datetime

from pydantic import BaseModel, Field


class CropRect(BaseModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0


class SyncConfigurationResponse(BaseModel):
    primary_asset_id: str | None
    equipment_asset_id: str | None
    auto_offset_seconds: float | None
    auto_offset_confidence: float | None
    manual_offset_seconds: float
    effective_offset: float
    trim_in_seconds: float | None
    trim_out_seconds: float | None
    tester_data_offset_seconds: float
    equipment_rotation_quarter_turns: int
    equipment_crop: CropRect
    last_synced_at: datetime | None


class SyncConfigurationUpdate(BaseModel):
    """Partial update; only fields present in the request are applied."""

    primary_asset_id: str | None = None
    equipment_asset_id: str | None = None
    manual_offset_seconds: float | None = None
    trim_in_seconds: float | None = Field(default=None, ge=0)
    trim_out_seconds: float | None = Field(default=None, ge=0)
    tester_data_offset_seconds: float | None = None
    equipment_rotation_quarter_turns: int | None = None
    equipment_crop: CropRect | None = None


class SyncDetectionResponse(BaseModel):
    offset_seconds: float
    confidence: float
    method: str
    primary_clap_time: float | None = None
    secondary_clap_time: float | None = None
    sync: SyncConfigurationResponse
