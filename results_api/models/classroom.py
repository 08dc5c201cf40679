"""Classroom and roster models."""

from sqlalchemy import BigInteger, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from results_api.core.database import Base
from results_api.models.base import IDMixin, TimestampMixin


class Classroom(Base, IDMixin, TimestampMixin):
    """Classroom with its current academic period."""

    __tablename__ = "classrooms"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    level: Mapped[str | None] = mapped_column(String(50), nullable=True)
    section: Mapped[str | None] = mapped_column(String(50), nullable=True)
    academic_year: Mapped[str | None] = mapped_column(String(20), nullable=True)
    academic_term: Mapped[str | None] = mapped_column(String(20), nullable=True)

    enrollments: Mapped[list["ClassroomStudent"]] = relationship(
        "ClassroomStudent",
        back_populates="classroom",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Classroom(id={self.id}, name={self.name})>"


class ClassroomStudent(Base, IDMixin, TimestampMixin):
    """Enrollment of a student in a classroom."""

    __tablename__ = "classroom_students"

    classroom_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classrooms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    enrollment_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    roll_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    classroom: Mapped["Classroom"] = relationship("Classroom", back_populates="enrollments")
    student: Mapped["User"] = relationship("User", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("classroom_id", "student_id", name="uq_classroom_student"),
    )

    def __repr__(self) -> str:
        return f"<ClassroomStudent(classroom_id={self.classroom_id}, student_id={self.student_id})>"


# Import to avoid circular imports
from results_api.models.user import User
