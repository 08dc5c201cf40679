"""Subject group management service."""

import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from results_api.core.exceptions import ConflictError, NotFoundError, ValidationError
from results_api.models.audit import AuditAction
from results_api.models.result import ResultBatch
from results_api.models.subject import Subject, SubjectGroup, SubjectGroupSubject
from results_api.schemas.subject import (
    SubjectGroupCreate,
    SubjectGroupFilter,
    SubjectGroupResponse,
    SubjectGroupUpdate,
    SubjectSummary,
)
from results_api.services.audit import AuditService

logger = logging.getLogger(__name__)


class SubjectGroupService:
    """CRUD over subject groups and their subject membership."""

    def __init__(self, db: Session):
        self.db = db

    def to_response(self, group: SubjectGroup) -> SubjectGroupResponse:
        subjects = [SubjectSummary.model_validate(s) for s in group.subjects]
        return SubjectGroupResponse(
            id=group.id,
            name=group.name,
            description=group.description,
            academic_session=group.academic_session,
            term=group.term,
            created_by=group.created_by,
            created_by_name=group.creator.full_name if group.creator else None,
            subjects=subjects,
            subject_count=len(subjects),
            created_at=group.created_at,
            updated_at=group.updated_at,
        )

    def get_group(self, group_id: int) -> SubjectGroup:
        group = self.db.get(SubjectGroup, group_id)
        if not group:
            raise NotFoundError("Subject group", str(group_id))
        return group

    def list_groups(
        self,
        filters: SubjectGroupFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[SubjectGroup], int]:
        """List subject groups, newest first."""
        query = select(SubjectGroup)

        if filters:
            if filters.academic_session:
                query = query.where(SubjectGroup.academic_session == filters.academic_session)
            if filters.term:
                query = query.where(SubjectGroup.term == filters.term)
            if filters.search:
                pattern = f"%{filters.search}%"
                query = query.where(
                    or_(
                        SubjectGroup.name.ilike(pattern),
                        SubjectGroup.description.ilike(pattern),
                    )
                )

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        query = (
            query
            .order_by(SubjectGroup.created_at.desc(), SubjectGroup.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(self.db.execute(query).scalars().all()), total

    def _validate_subject_ids(self, subject_ids: list[int]) -> list[int]:
        """Return the distinct ids in order; every one of them must exist."""
        unique_ids = list(dict.fromkeys(subject_ids))
        if not unique_ids:
            return unique_ids

        found = set(
            self.db.execute(select(Subject.id).where(Subject.id.in_(unique_ids))).scalars()
        )
        missing = [sid for sid in unique_ids if sid not in found]
        if missing:
            raise ValidationError(
                "One or more subjects not found",
                details={"missing_subject_ids": missing},
            )
        return unique_ids

    def _replace_members(self, group: SubjectGroup, subject_ids: list[int]) -> None:
        self.db.execute(
            delete(SubjectGroupSubject).where(SubjectGroupSubject.subject_group_id == group.id)
        )
        for subject_id in subject_ids:
            self.db.add(SubjectGroupSubject(subject_group_id=group.id, subject_id=subject_id))
        self.db.flush()
        # Membership is written through the association table
        self.db.expire(group, ["subjects"])

    def create_group(self, data: SubjectGroupCreate, user_id: int) -> SubjectGroup:
        """Create a group with its subjects."""
        subject_ids = self._validate_subject_ids(data.subject_ids)

        group = SubjectGroup(
            name=data.name,
            description=data.description,
            academic_session=data.academic_session,
            term=data.term,
            created_by=user_id,
        )
        self.db.add(group)
        self.db.flush()
        self._replace_members(group, subject_ids)

        AuditService(self.db).log(
            action=AuditAction.DATA_CREATED,
            resource_type="subject_group",
            resource_id=group.id,
            user_id=user_id,
            description=f"Created subject group {group.name} with {len(subject_ids)} subjects",
        )
        logger.info(f"Subject group {group.id} created by user {user_id}")
        return group

    def update_group(self, group_id: int, data: SubjectGroupUpdate, user_id: int) -> SubjectGroup:
        """Update a group; ``subject_ids`` replaces the membership when given."""
        group = self.get_group(group_id)

        subject_ids = None
        if data.subject_ids is not None:
            subject_ids = self._validate_subject_ids(data.subject_ids)

        group.name = data.name
        group.description = data.description
        group.academic_session = data.academic_session
        group.term = data.term
        self.db.flush()

        if subject_ids is not None:
            self._replace_members(group, subject_ids)

        AuditService(self.db).log(
            action=AuditAction.DATA_UPDATED,
            resource_type="subject_group",
            resource_id=group.id,
            user_id=user_id,
            description=f"Updated subject group {group.name}",
        )
        logger.info(f"Subject group {group_id} updated by user {user_id}")
        return group

    def delete_group(self, group_id: int, user_id: int) -> None:
        """Delete a group that no result batch uses."""
        group = self.get_group(group_id)

        batch_count = self.db.scalar(
            select(func.count())
            .select_from(ResultBatch)
            .where(ResultBatch.subject_group_id == group_id)
        )
        if batch_count:
            raise ConflictError(
                "Cannot delete subject group that is being used by result batches",
                details={"batch_count": batch_count},
            )

        group_name = group.name
        self.db.execute(
            delete(SubjectGroupSubject).where(SubjectGroupSubject.subject_group_id == group_id)
        )
        self.db.delete(group)

        AuditService(self.db).log(
            action=AuditAction.DATA_DELETED,
            resource_type="subject_group",
            resource_id=group_id,
            user_id=user_id,
            description=f"Deleted subject group {group_name}",
        )
        logger.info(f"Subject group {group_id} deleted by user {user_id}")
