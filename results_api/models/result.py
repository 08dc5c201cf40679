"""Result batch and student result models."""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    DECIMAL,
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from results_api.core.database import Base
from results_api.models.base import IDMixin, JSONType, TimestampMixin


class BatchStatus(str, enum.Enum):
    """Result batch lifecycle states."""

    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PUBLISHED = "published"


# States from which a score sheet may be (re)imported
IMPORTABLE_STATUSES = (BatchStatus.DRAFT, BatchStatus.COMPLETED, BatchStatus.FAILED)


class ResultBatch(Base, IDMixin, TimestampMixin):
    """One score-sheet import scoped to a classroom, academic year and term."""

    __tablename__ = "result_batches"

    batch_name: Mapped[str] = mapped_column(String(200), nullable=False)
    batch_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    classroom_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classrooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    term: Mapped[str] = mapped_column(String(20), nullable=False)

    grading_scale_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("grading_scales.id", ondelete="RESTRICT"),
        nullable=False,
    )
    subject_group_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subject_groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus),
        default=BatchStatus.DRAFT,
        nullable=False,
        index=True,
    )
    csv_file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_log: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)

    # Statistics from the last import
    total_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_subjects: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_results: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_imports: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Report card sign-off
    teacher_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    principal_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    teacher_signature_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    principal_signature_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    updated_by: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Relationships
    classroom: Mapped["Classroom"] = relationship("Classroom", lazy="selectin")
    grading_scale: Mapped["GradingScale"] = relationship("GradingScale", lazy="selectin")
    subject_group: Mapped["SubjectGroup"] = relationship("SubjectGroup", lazy="selectin")
    creator: Mapped["User"] = relationship("User", foreign_keys=[created_by], lazy="selectin")

    __table_args__ = (
        Index("ix_result_batches_scope", "classroom_id", "academic_year", "term"),
    )

    def artifact_urls(self) -> list[str]:
        """Stored URLs of files owned by this batch."""
        return [
            url
            for url in (
                self.csv_file_path,
                self.teacher_signature_url,
                self.principal_signature_url,
            )
            if url
        ]

    def __repr__(self) -> str:
        return f"<ResultBatch(id={self.id}, code={self.batch_code}, status={self.status})>"


class StudentResult(Base, IDMixin, TimestampMixin):
    """Score of one student in one subject for a classroom, year and term."""

    __tablename__ = "student_results"

    classroom_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classrooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
    )
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    term: Mapped[str] = mapped_column(String(20), nullable=False)
    ca_score: Mapped[Decimal] = mapped_column(DECIMAL(5, 2), default=Decimal("0"), nullable=False)
    exam_score: Mapped[Decimal] = mapped_column(DECIMAL(5, 2), default=Decimal("0"), nullable=False)
    total_score: Mapped[Decimal] = mapped_column(DECIMAL(5, 2), default=Decimal("0"), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(5), nullable=True)
    remark: Mapped[str | None] = mapped_column(String(255), nullable=True)
    teacher_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Relationships
    student: Mapped["User"] = relationship("User", foreign_keys=[student_id], lazy="selectin")
    subject: Mapped["Subject"] = relationship("Subject", lazy="selectin")

    __table_args__ = (
        UniqueConstraint(
            "classroom_id", "student_id", "subject_id", "academic_year", "term",
            name="unique_student_result",
        ),
        Index("ix_student_results_scope", "classroom_id", "academic_year", "term"),
    )

    def __repr__(self) -> str:
        return f"<StudentResult(student_id={self.student_id}, subject_id={self.subject_id}, grade={self.grade})>"


# Import to avoid circular imports
from results_api.models.classroom import Classroom
from results_api.models.grading import GradingScale
from results_api.models.subject import Subject, SubjectGroup
from results_api.models.user import User
