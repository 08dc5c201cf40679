"""Read side of student results: class sheets and report cards."""

import logging

from sqlalchemy import Select, and_, exists, select
from sqlalchemy.orm import Session

from results_api.core.exceptions import NotFoundError
from results_api.models.classroom import Classroom, ClassroomStudent
from results_api.models.result import BatchStatus, ResultBatch, StudentResult
from results_api.models.subject import Subject
from results_api.models.user import User
from results_api.schemas.result import (
    ReportCardClassroom,
    ReportCardResponse,
    ReportCardStudent,
    ResultScope,
    StudentResultResponse,
)

logger = logging.getLogger(__name__)


class ResultQueryService:
    """Result lookup service."""

    def __init__(self, db: Session):
        self.db = db

    def to_response(self, result: StudentResult) -> StudentResultResponse:
        """Convert StudentResult to response with student and subject names."""
        return StudentResultResponse(
            id=result.id,
            classroom_id=result.classroom_id,
            student_id=result.student_id,
            first_name=result.student.first_name if result.student else None,
            last_name=result.student.last_name if result.student else None,
            email=result.student.email if result.student else None,
            subject_id=result.subject_id,
            subject_name=result.subject.name if result.subject else None,
            subject_code=result.subject.code if result.subject else None,
            academic_year=result.academic_year,
            term=result.term,
            ca_score=result.ca_score,
            exam_score=result.exam_score,
            total_score=result.total_score,
            grade=result.grade,
            remark=result.remark,
            teacher_id=result.teacher_id,
            updated_at=result.updated_at,
        )

    def _apply_scope(
        self,
        query: Select,
        scope: ResultScope | None,
        published_only: bool,
    ) -> Select:
        if scope:
            if scope.academic_year:
                query = query.where(StudentResult.academic_year == scope.academic_year)
            if scope.term:
                query = query.where(StudentResult.term == scope.term)

        if published_only:
            # Results only become visible once a batch for the same scope is published
            query = query.where(
                exists().where(
                    and_(
                        ResultBatch.classroom_id == StudentResult.classroom_id,
                        ResultBatch.academic_year == StudentResult.academic_year,
                        ResultBatch.term == StudentResult.term,
                        ResultBatch.status == BatchStatus.PUBLISHED,
                    )
                )
            )
        return query

    def get_class_results(
        self,
        classroom_id: int,
        scope: ResultScope | None = None,
        published_only: bool = False,
        student_id: int | None = None,
    ) -> list[StudentResultResponse]:
        """All results of a classroom ordered by student name, then subject.

        With ``student_id`` only that student's rows are returned.
        """
        query = (
            select(StudentResult)
            .join(User, User.id == StudentResult.student_id)
            .join(Subject, Subject.id == StudentResult.subject_id)
            .where(StudentResult.classroom_id == classroom_id)
        )
        if student_id is not None:
            query = query.where(StudentResult.student_id == student_id)
        query = self._apply_scope(query, scope, published_only)
        query = query.order_by(User.last_name, User.first_name, Subject.name)

        results = self.db.execute(query).scalars().all()
        return [self.to_response(r) for r in results]

    def get_batch_results(self, batch: ResultBatch) -> list[StudentResultResponse]:
        """Results of a batch's classroom, academic year and term."""
        return self.get_class_results(
            batch.classroom_id,
            ResultScope(academic_year=batch.academic_year, term=batch.term),
        )

    def get_report_card(
        self,
        student_id: int,
        classroom_id: int,
        scope: ResultScope | None = None,
        published_only: bool = False,
    ) -> ReportCardResponse:
        """Student details, classroom and per-subject results."""
        student = self.db.get(User, student_id)
        if not student:
            raise NotFoundError("Student", str(student_id))

        enrollment = self.db.execute(
            select(ClassroomStudent).where(
                ClassroomStudent.classroom_id == classroom_id,
                ClassroomStudent.student_id == student_id,
            )
        ).scalar_one_or_none()
        classroom = self.db.get(Classroom, classroom_id)

        query = (
            select(StudentResult)
            .join(Subject, Subject.id == StudentResult.subject_id)
            .where(
                StudentResult.student_id == student_id,
                StudentResult.classroom_id == classroom_id,
            )
        )
        query = self._apply_scope(query, scope, published_only)
        results = self.db.execute(query.order_by(Subject.name)).scalars().all()

        logger.debug(
            f"Report card for student {student_id} in classroom {classroom_id}: {len(results)} results"
        )
        return ReportCardResponse(
            student=ReportCardStudent(
                id=student.id,
                first_name=student.first_name,
                last_name=student.last_name,
                email=student.email,
                enrollment_number=enrollment.enrollment_number if enrollment else None,
                roll_number=enrollment.roll_number if enrollment else None,
            ),
            classroom=ReportCardClassroom.model_validate(classroom) if classroom else None,
            results=[self.to_response(r) for r in results],
        )
