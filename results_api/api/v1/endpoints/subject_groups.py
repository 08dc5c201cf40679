"""Subject group endpoints."""

from fastapi import APIRouter, Query, status

from results_api.core.database import DbSession
from results_api.core.dependencies import CurrentUser, StaffUser
from results_api.schemas.common import MessageResponse, PaginatedResponse
from results_api.schemas.subject import (
    SubjectGroupCreate,
    SubjectGroupFilter,
    SubjectGroupResponse,
    SubjectGroupUpdate,
)
from results_api.services.subject_group import SubjectGroupService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[SubjectGroupResponse])
def list_subject_groups(
    user: CurrentUser,
    db: DbSession,
    academic_session: str | None = None,
    term: str | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    service = SubjectGroupService(db)
    filters = SubjectGroupFilter(academic_session=academic_session, term=term, search=search)
    groups, total = service.list_groups(filters, page=page, page_size=page_size)
    return PaginatedResponse[SubjectGroupResponse].build(
        [service.to_response(g) for g in groups], total, page, page_size
    )


@router.get("/{group_id}", response_model=SubjectGroupResponse)
def get_subject_group(group_id: int, user: CurrentUser, db: DbSession):
    service = SubjectGroupService(db)
    return service.to_response(service.get_group(group_id))


@router.post("", response_model=SubjectGroupResponse, status_code=status.HTTP_201_CREATED)
def create_subject_group(request: SubjectGroupCreate, user: StaffUser, db: DbSession):
    """Create a subject group. Every subject id must exist or nothing is created."""
    service = SubjectGroupService(db)
    return service.to_response(service.create_group(request, user.id))


@router.put("/{group_id}", response_model=SubjectGroupResponse)
def update_subject_group(
    group_id: int,
    request: SubjectGroupUpdate,
    user: StaffUser,
    db: DbSession,
):
    """Update a subject group; subject_ids, when sent, replaces the whole membership."""
    service = SubjectGroupService(db)
    return service.to_response(service.update_group(group_id, request, user.id))


@router.delete("/{group_id}", response_model=MessageResponse)
def delete_subject_group(group_id: int, user: StaffUser, db: DbSession):
    """Delete a subject group. Refused while any result batch uses it."""
    SubjectGroupService(db).delete_group(group_id, user.id)
    return MessageResponse(message="Subject group deleted successfully")
