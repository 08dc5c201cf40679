"""Grading scale endpoints."""

from fastapi import APIRouter, Query, Request, status

from results_api.core.database import DbSession
from results_api.core.dependencies import CurrentUser, StaffUser
from results_api.models.audit import AuditAction
from results_api.schemas.common import MessageResponse, PaginatedResponse
from results_api.schemas.grading import GradingScaleCreate, GradingScaleResponse, GradingScaleUpdate
from results_api.services.audit import AuditService
from results_api.services.grading_scale import GradingScaleService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[GradingScaleResponse])
def list_grading_scales(
    user: CurrentUser,
    db: DbSession,
    search: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    """List grading scales, default scale first."""
    service = GradingScaleService(db)
    scales, total = service.list_scales(search=search, page=page, page_size=page_size)
    return PaginatedResponse[GradingScaleResponse].build(
        [service.to_response(s) for s in scales], total, page, page_size
    )


@router.get("/{scale_id}", response_model=GradingScaleResponse)
def get_grading_scale(scale_id: int, user: CurrentUser, db: DbSession):
    service = GradingScaleService(db)
    return service.to_response(service.get_scale(scale_id))


@router.post("", response_model=GradingScaleResponse, status_code=status.HTTP_201_CREATED)
def create_grading_scale(
    request: GradingScaleCreate,
    user: StaffUser,
    db: DbSession,
    http_request: Request,
):
    """
    Create a grading scale.

    Bands are checked in order; the first band with min <= score <= max wins.
    Scores outside every band are graded F (Fail).
    """
    service = GradingScaleService(db)
    scale = service.create_scale(request, user.id)

    AuditService(db).log(
        action=AuditAction.DATA_CREATED,
        resource_type="grading_scale",
        resource_id=scale.id,
        user_id=user.id,
        description=f"Grading scale {scale.name} created",
        ip_address=http_request.client.host if http_request.client else None,
    )
    return service.to_response(scale)


@router.put("/{scale_id}", response_model=GradingScaleResponse)
def update_grading_scale(
    scale_id: int,
    request: GradingScaleUpdate,
    user: StaffUser,
    db: DbSession,
    http_request: Request,
):
    service = GradingScaleService(db)
    scale = service.update_scale(scale_id, request)

    AuditService(db).log(
        action=AuditAction.DATA_UPDATED,
        resource_type="grading_scale",
        resource_id=scale.id,
        user_id=user.id,
        description=f"Grading scale {scale.name} updated",
        ip_address=http_request.client.host if http_request.client else None,
    )
    return service.to_response(scale)


@router.patch("/{scale_id}/toggle-default", response_model=GradingScaleResponse)
def toggle_grading_scale_default(scale_id: int, user: StaffUser, db: DbSession):
    """Make this the default scale (clearing any other), or unset it."""
    service = GradingScaleService(db)
    return service.to_response(service.toggle_default(scale_id))


@router.delete("/{scale_id}", response_model=MessageResponse)
def delete_grading_scale(scale_id: int, user: StaffUser, db: DbSession, http_request: Request):
    """Delete a grading scale that no result batch uses."""
    GradingScaleService(db).delete_scale(scale_id)

    AuditService(db).log(
        action=AuditAction.DATA_DELETED,
        resource_type="grading_scale",
        resource_id=scale_id,
        user_id=user.id,
        description=f"Grading scale {scale_id} deleted",
        ip_address=http_request.client.host if http_request.client else None,
    )
    return MessageResponse(message="Grading scale deleted successfully")
