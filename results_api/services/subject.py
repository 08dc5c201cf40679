"""Subject catalogue service."""

import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from results_api.core.exceptions import ConflictError, NotFoundError
from results_api.models.result import StudentResult
from results_api.models.subject import Subject, SubjectGroupSubject
from results_api.schemas.subject import SubjectCreate, SubjectFilter, SubjectUpdate

logger = logging.getLogger(__name__)


class SubjectService:
    """Subject management service."""

    def __init__(self, db: Session):
        self.db = db

    def get_subject(self, subject_id: int) -> Subject:
        subject = self.db.get(Subject, subject_id)
        if not subject:
            raise NotFoundError("Subject", str(subject_id))
        return subject

    def list_subjects(
        self,
        filters: SubjectFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[Subject], int]:
        query = select(Subject)

        if filters:
            if filters.search:
                pattern = f"%{filters.search}%"
                query = query.where(or_(Subject.name.ilike(pattern), Subject.code.ilike(pattern)))
            if filters.category:
                query = query.where(Subject.category == filters.category)
            if filters.is_active is not None:
                query = query.where(Subject.is_active.is_(filters.is_active))

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        query = query.order_by(Subject.name).offset((page - 1) * page_size).limit(page_size)
        return list(self.db.execute(query).scalars().all()), total

    def _ensure_code_available(self, code: str, exclude_id: int | None = None) -> None:
        query = select(Subject.id).where(func.upper(Subject.code) == code.upper())
        if exclude_id is not None:
            query = query.where(Subject.id != exclude_id)
        if self.db.execute(query).first():
            raise ConflictError("Subject code already exists", details={"code": code})

    def create_subject(self, data: SubjectCreate) -> Subject:
        self._ensure_code_available(data.code)
        subject = Subject(
            name=data.name,
            code=data.code,
            category=data.category,
            description=data.description,
        )
        self.db.add(subject)
        self.db.flush()
        logger.info(f"Subject {subject.code} created")
        return subject

    def update_subject(self, subject_id: int, data: SubjectUpdate) -> Subject:
        subject = self.get_subject(subject_id)
        self._ensure_code_available(data.code, exclude_id=subject_id)

        subject.name = data.name
        subject.code = data.code
        subject.category = data.category
        subject.description = data.description
        self.db.flush()
        logger.info(f"Subject {subject_id} updated")
        return subject

    def toggle_active(self, subject_id: int) -> Subject:
        """Flip the active flag; inactive subjects are rejected by imports."""
        subject = self.get_subject(subject_id)
        subject.is_active = not subject.is_active
        self.db.flush()
        logger.info(f"Subject {subject.code} is_active={subject.is_active}")
        return subject

    def delete_subject(self, subject_id: int) -> None:
        subject = self.get_subject(subject_id)

        result_count = self.db.scalar(
            select(func.count())
            .select_from(StudentResult)
            .where(StudentResult.subject_id == subject_id)
        )
        if result_count:
            raise ConflictError(
                "Cannot delete subject that has results associated with it",
                details={"result_count": result_count},
            )

        self.db.execute(
            delete(SubjectGroupSubject).where(SubjectGroupSubject.subject_id == subject_id)
        )
        self.db.delete(subject)
        self.db.flush()
        logger.info(f"Subject {subject_id} deleted")
