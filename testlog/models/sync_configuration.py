from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from testlog.exceptions import InvalidTrimRangeError
from testlog.models.base import Base, UUIDMixin, new_id
from testlog.render.geometry import Rect, clamp_normalized_crop, normalize_quarter_turns


class SyncConfiguration(Base, UUIDMixin):
    """Per-test alignment of the primary and equipment videos."""

    __tablename__ = "sync_configurations"

    pull_test_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("pull_tests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    primary_asset_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    equipment_asset_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # Seconds; positive when the equipment recording started earlier
    auto_offset_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    auto_offset_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    manual_offset_seconds: Mapped[float] = mapped_column(Float, default=0.0)

    trim_in_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    trim_out_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    tester_data_offset_seconds: Mapped[float] = mapped_column(Float, default=0.0)

    equipment_rotation_quarter_turns: Mapped[int] = mapped_column(Integer, default=0)
    equipment_crop_x: Mapped[float] = mapped_column(Float, default=0.0)
    equipment_crop_y: Mapped[float] = mapped_column(Float, default=0.0)
    equipment_crop_width: Mapped[float] = mapped_column(Float, default=1.0)
    equipment_crop_height: Mapped[float] = mapped_column(Float, default=1.0)

    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __init__(self, **kwargs):
        kwargs.setdefault("id", new_id())
        kwargs.setdefault("manual_offset_seconds", 0.0)
        kwargs.setdefault("tester_data_offset_seconds", 0.0)
        kwargs.setdefault("equipment_rotation_quarter_turns", 0)
        kwargs.setdefault("equipment_crop_x", 0.0)
        kwargs.setdefault("equipment_crop_y", 0.0)
        kwargs.setdefault("equipment_crop_width", 1.0)
        kwargs.setdefault("equipment_crop_height", 1.0)
        super().__init__(**kwargs)

    @validates("equipment_rotation_quarter_turns")
    def _normalize_rotation(self, key: str, value: int) -> int:
        return normalize_quarter_turns(int(value or 0))

    @property
    def effective_offset(self) -> float:
        return (self.auto_offset_seconds or 0.0) + (self.manual_offset_seconds or 0.0)

    @property
    def equipment_crop(self) -> Rect:
        return clamp_normalized_crop(
            Rect(
                self.equipment_crop_x,
                self.equipment_crop_y,
                self.equipment_crop_width,
                self.equipment_crop_height,
            )
        )

    @equipment_crop.setter
    def equipment_crop(self, rect: Rect) -> None:
        clamped = clamp_normalized_crop(rect)
        self.equipment_crop_x = clamped.x
        self.equipment_crop_y = clamped.y
        self.equipment_crop_width = clamped.width
        self.equipment_crop_height = clamped.height

    def set_trim(self, trim_in: float | None, trim_out: float | None) -> None:
        if trim_in is not None and trim_out is not None and trim_out < trim_in:
            raise InvalidTrimRangeError(trim_in, trim_out)
        self.trim_in_seconds = trim_in
        self.trim_out_seconds = trim_out

    def __repr__(self) -> str:
        return f"<SyncConfiguration test={self.pull_test_id} offset={self.effective_offset:.3f}>"
