"""Subject endpoints."""

from fastapi import APIRouter, Query, Request, status

from results_api.core.database import DbSession
from results_api.core.dependencies import CurrentUser, StaffUser
from results_api.models.audit import AuditAction
from results_api.models.subject import SubjectCategory
from results_api.schemas.common import MessageResponse, PaginatedResponse
from results_api.schemas.subject import SubjectCreate, SubjectFilter, SubjectResponse, SubjectUpdate
from results_api.services.audit import AuditService
from results_api.services.subject import SubjectService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[SubjectResponse])
def list_subjects(
    user: CurrentUser,
    db: DbSession,
    search: str | None = None,
    category: SubjectCategory | None = None,
    is_active: bool | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    """List subjects ordered by name; search matches name or code."""
    filters = SubjectFilter(search=search, category=category, is_active=is_active)
    subjects, total = SubjectService(db).list_subjects(filters, page=page, page_size=page_size)
    return PaginatedResponse[SubjectResponse].build(
        [SubjectResponse.model_validate(s) for s in subjects], total, page, page_size
    )


@router.post("", response_model=SubjectResponse, status_code=status.HTTP_201_CREATED)
def create_subject(request: SubjectCreate, user: StaffUser, db: DbSession, http_request: Request):
    """Create a subject. Codes are unique and used as score sheet column prefixes."""
    subject = SubjectService(db).create_subject(request)

    AuditService(db).log(
        action=AuditAction.DATA_CREATED,
        resource_type="subject",
        resource_id=subject.id,
        user_id=user.id,
        description=f"Subject {subject.code} created",
        ip_address=http_request.client.host if http_request.client else None,
    )
    return subject


@router.put("/{subject_id}", response_model=SubjectResponse)
def update_subject(
    subject_id: int,
    request: SubjectUpdate,
    user: StaffUser,
    db: DbSession,
    http_request: Request,
):
    subject = SubjectService(db).update_subject(subject_id, request)

    AuditService(db).log(
        action=AuditAction.DATA_UPDATED,
        resource_type="subject",
        resource_id=subject.id,
        user_id=user.id,
        description=f"Subject {subject.code} updated",
        ip_address=http_request.client.host if http_request.client else None,
    )
    return subject


@router.patch("/{subject_id}/toggle-status", response_model=SubjectResponse)
def toggle_subject_status(subject_id: int, user: StaffUser, db: DbSession):
    """Activate or deactivate a subject. Inactive subjects are rejected on import."""
    return SubjectService(db).toggle_active(subject_id)


@router.delete("/{subject_id}", response_model=MessageResponse)
def delete_subject(subject_id: int, user: StaffUser, db: DbSession, http_request: Request):
    """Delete a subject that has no recorded results."""
    SubjectService(db).delete_subject(subject_id)

    AuditService(db).log(
        action=AuditAction.DATA_DELETED,
        resource_type="subject",
        resource_id=subject_id,
        user_id=user.id,
        description=f"Subject {subject_id} deleted",
        ip_address=http_request.client.host if http_request.client else None,
    )
    return MessageResponse(message="Subject deleted successfully")
