"""Subject and subject group models."""

import enum

from sqlalchemy import BigInteger, Boolean, Enum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from results_api.core.database import Base
from results_api.models.base import IDMixin, TimestampMixin


class SubjectCategory(str, enum.Enum):
    """Subject category enumeration."""

    SCIENCE = "science"
    ARTS = "arts"
    COMMERCIAL = "commercial"
    GENERAL = "general"
    VOCATIONAL = "vocational"
    LANGUAGE = "language"
    HUMANITIES = "humanities"
    OTHER = "other"


class Subject(Base, IDMixin, TimestampMixin):
    """Subject, matched in score sheets by its code."""

    __tablename__ = "subjects"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    category: Mapped[SubjectCategory] = mapped_column(
        Enum(SubjectCategory),
        default=SubjectCategory.GENERAL,
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Subject(id={self.id}, code={self.code})>"


class SubjectGroup(Base, IDMixin, TimestampMixin):
    """Reusable named set of subjects a result batch is graded against."""

    __tablename__ = "subject_groups"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    academic_session: Mapped[str | None] = mapped_column(String(20), nullable=True)
    term: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_by: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    subjects: Mapped[list["Subject"]] = relationship(
        "Subject",
        secondary="subject_group_subjects",
        order_by="Subject.name",
        lazy="selectin",
        viewonly=True,
    )
    creator: Mapped["User | None"] = relationship("User", lazy="selectin")

    def __repr__(self) -> str:
        return f"<SubjectGroup(id={self.id}, name={self.name})>"


class SubjectGroupSubject(Base, IDMixin):
    """Membership of a subject in a subject group."""

    __tablename__ = "subject_group_subjects"

    subject_group_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subject_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        UniqueConstraint("subject_group_id", "subject_id", name="uq_subject_group_subject"),
    )


# Import to avoid circular imports
from results_api.models.user import User
