"""Grading scale model."""

from typing import Any

from sqlalchemy import BigInteger, Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from results_api.core.database import Base
from results_api.models.base import IDMixin, JSONType, TimestampMixin
from results_api.services.grading import GradeBand, decode_grade_config


class GradingScale(Base, IDMixin, TimestampMixin):
    """Ordered score ranges mapping a total score to a grade and remark.

    ``grade_config`` example::

        [{"min": 70, "max": 100, "grade": "A", "remark": "Excellent"}, ...]
    """

    __tablename__ = "grading_scales"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    grade_config: Mapped[Any] = mapped_column(JSONType, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    creator: Mapped["User | None"] = relationship("User", lazy="selectin")

    @property
    def bands(self) -> list[GradeBand]:
        """Grade configuration decoded into typed bands, in stored order."""
        return decode_grade_config(self.grade_config)

    def __repr__(self) -> str:
        return f"<GradingScale(id={self.id}, name={self.name})>"


# Import to avoid circular imports
from results_api.models.user import User
