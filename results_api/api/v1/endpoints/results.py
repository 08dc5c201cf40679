"""Class result sheets, student report cards and direct result import."""

from fastapi import APIRouter, Query, status

from results_api.core.database import DbSession
from results_api.core.dependencies import CurrentUser, StaffUser, is_restricted_viewer
from results_api.core.exceptions import PermissionDeniedError
from results_api.models.user import UserRole
from results_api.schemas.result import (
    ReportCardResponse,
    ResultRecordImport,
    ResultRecordImportResponse,
    ResultScope,
    StudentResultResponse,
)
from results_api.services.result_import import ResultRecordService
from results_api.services.result_query import ResultQueryService

router = APIRouter()


@router.post("/import", response_model=ResultRecordImportResponse, status_code=status.HTTP_201_CREATED)
def import_results(request: ResultRecordImport, user: StaffUser, db: DbSession):
    """
    Grade and store scores for a classroom without a score sheet.

    Results are filed under the classroom's current academic year and term;
    existing results for the same student and subject are overwritten.
    """
    stored = ResultRecordService(db).import_records(request, user.id)
    query = ResultQueryService(db)
    return ResultRecordImportResponse(
        message="Results imported successfully",
        count=len(stored),
        results=[query.to_response(result) for result in stored],
    )


@router.get("/class/{classroom_id}", response_model=list[StudentResultResponse])
def get_class_results(
    classroom_id: int,
    user: CurrentUser,
    db: DbSession,
    academic_year: str | None = None,
    term: str | None = None,
):
    """Results of a classroom ordered by student name and subject.

    Students only get their own rows.
    """
    return ResultQueryService(db).get_class_results(
        classroom_id,
        ResultScope(academic_year=academic_year, term=term),
        published_only=is_restricted_viewer(user),
        student_id=user.id if user.role == UserRole.STUDENT else None,
    )


@router.get("/student/{student_id}/report-card", response_model=ReportCardResponse)
def get_student_report_card(
    student_id: int,
    user: CurrentUser,
    db: DbSession,
    classroom_id: int = Query(...),
    academic_year: str | None = None,
    term: str | None = None,
):
    """
    Report card of a student in a classroom.

    Students may only read their own card; students and parents only see
    results of published batches.
    """
    if user.role == UserRole.STUDENT and user.id != student_id:
        raise PermissionDeniedError("Students can only view their own report card")

    return ResultQueryService(db).get_report_card(
        student_id,
        classroom_id,
        ResultScope(academic_year=academic_year, term=term),
        published_only=is_restricted_viewer(user),
    )
