from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from testlog.models.base import Base, UUIDMixin, new_id, utcnow
from testlog.models.enums import AssetType, VideoRole


class MediaAsset(Base, UUIDMixin):
    __tablename__ = "media_assets"

    # Lookup key of the owning test; NULL for records that lost their owner
    pull_test_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("pull_tests.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    # Type: video, photo, export, document, tester_data
    asset_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)

    # Path relative to the managed storage root
    relative_path: Mapped[str] = mapped_column(String(1000), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    byte_size: Mapped[int] = mapped_column(Integer, default=0)
    content_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    checksum_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    is_managed_copy: Mapped[bool] = mapped_column(Boolean, default=True)

    # Video specific
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    frame_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    pixel_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pixel_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    video_role: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __init__(self, **kwargs):
        kwargs.setdefault("id", new_id())
        kwargs.setdefault("created_at", utcnow())
        kwargs.setdefault("byte_size", 0)
        kwargs.setdefault("is_managed_copy", True)
        if kwargs.get("asset_type") == AssetType.VIDEO:
            kwargs.setdefault("video_role", VideoRole.UNASSIGNED.value)
        super().__init__(**kwargs)

    @property
    def is_video(self) -> bool:
        return self.asset_type == AssetType.VIDEO

    @property
    def is_tester_data(self) -> bool:
        return self.asset_type == AssetType.TESTER_DATA

    def __repr__(self) -> str:
        return f"<MediaAsset {self.filename} ({self.asset_type})>"
