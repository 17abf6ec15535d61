from sqlalchemy import Boolean, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from testlog.models.base import Base, UUIDMixin, new_id

TESTER_MAX_LABEL = "Tester Max"


class Measurement(Base, UUIDMixin):
    __tablename__ = "measurements"

    pull_test_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("pull_tests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="lbf")

    # False for values computed from tester data
    is_manual: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    def __init__(self, **kwargs):
        kwargs.setdefault("id", new_id())
        kwargs.setdefault("unit", "lbf")
        kwargs.setdefault("is_manual", True)
        kwargs.setdefault("sort_order", 0)
        super().__init__(**kwargs)

    @property
    def is_tester_max(self) -> bool:
        return not self.is_manual and self.label == TESTER_MAX_LABEL

    def __repr__(self) -> str:
        return f"<Measurement {self.label}={self.value}{self.unit}>"
