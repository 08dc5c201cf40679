"""Result batch endpoints."""

import os
from io import BytesIO
from typing import Literal

from fastapi import APIRouter, BackgroundTasks, File, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse

from results_api.core.config import settings
from results_api.core.database import DbSession, SessionFactory
from results_api.core.dependencies import AdminUser, StaffUser
from results_api.core.exceptions import UploadError
from results_api.core.scheduler import Scheduler
from results_api.core.storage import Storage, key_from_url
from results_api.models.result import BatchStatus
from results_api.schemas.common import MessageResponse, PaginatedResponse
from results_api.schemas.result import (
    BatchCreate,
    BatchFilter,
    BatchImportResult,
    BatchResponse,
    BatchResultsResponse,
    BatchSignatureUpdate,
    BatchStatusUpdate,
    BatchUpdate,
    SignatureUploadResponse,
)
from results_api.services.artifact_cleanup import ArtifactCleanupService
from results_api.services.result_batch import ResultBatchService
from results_api.services.result_import import ResultImportService
from results_api.services.result_query import ResultQueryService
from results_api.services.score_sheet import iter_score_sheet_rows

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _validate_upload(file: UploadFile, allowed_extensions: list[str]) -> None:
    """Check name, extension and size of an uploaded file without reading it into memory."""
    if not file.filename:
        raise UploadError("No file provided")

    extension = os.path.splitext(file.filename)[1].lower()
    if extension not in allowed_extensions:
        raise UploadError(
            f"Only {', '.join(allowed_extensions)} files are allowed",
            details={"filename": file.filename},
        )

    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    if size == 0:
        raise UploadError("Uploaded file is empty")
    if size > settings.max_upload_size_bytes:
        raise UploadError(f"File size exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit")


@router.post("/batches", response_model=BatchResponse, status_code=status.HTTP_201_CREATED)
def create_batch(request: BatchCreate, user: StaffUser, db: DbSession):
    """
    Create a draft result batch for a classroom, academic year and term.
    The batch code is generated as {PREFIX}-{year}-T{term}-{sequence}.
    """
    service = ResultBatchService(db)
    batch = service.create_batch(request, user.id)
    return service.to_response(batch)


@router.get("/batches", response_model=PaginatedResponse[BatchResponse])
def list_batches(
    user: StaffUser,
    db: DbSession,
    classroom_id: int | None = None,
    academic_year: str | None = None,
    term: str | None = None,
    batch_status: BatchStatus | None = Query(None, alias="status"),
    created_by: int | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    """List result batches, newest first, with live student/subject/result counts."""
    filters = BatchFilter(
        classroom_id=classroom_id,
        academic_year=academic_year,
        term=term,
        status=batch_status,
        created_by=created_by,
    )
    batches, total = ResultBatchService(db).list_batches(filters, page=page, page_size=page_size)
    return PaginatedResponse[BatchResponse].build(batches, total, page, page_size)


@router.get("/batches/{batch_id}", response_model=BatchResponse)
def get_batch(batch_id: int, user: StaffUser, db: DbSession):
    service = ResultBatchService(db)
    return service.to_response(service.get_batch(batch_id))


@router.put("/batches/{batch_id}", response_model=BatchResponse)
def update_batch(batch_id: int, request: BatchUpdate, user: StaffUser, db: DbSession):
    service = ResultBatchService(db)
    batch = service.update_batch(batch_id, request, user.id)
    return service.to_response(batch)


@router.delete("/batches/{batch_id}", response_model=MessageResponse)
def delete_batch(
    batch_id: int,
    user: StaffUser,
    db: DbSession,
    storage: Storage,
    scheduler: Scheduler,
    background_tasks: BackgroundTasks,
):
    """
    Delete a batch together with all results of its classroom, year and term.
    Stored files (score sheet, signatures) are removed in the background.
    """
    artifact_keys = ResultBatchService(db, storage).delete_batch(batch_id, user.id)
    if artifact_keys:
        cleanup = ArtifactCleanupService(storage, scheduler)
        background_tasks.add_task(cleanup.cleanup, artifact_keys)
    return MessageResponse(message="Result batch deleted successfully")


@router.patch("/batches/{batch_id}/signatures", response_model=BatchResponse)
def update_batch_signatures(
    batch_id: int,
    request: BatchSignatureUpdate,
    user: StaffUser,
    db: DbSession,
):
    """Update any of teacher/principal names and signature URLs."""
    service = ResultBatchService(db)
    batch = service.update_signatures(batch_id, request, user.id)
    return service.to_response(batch)


@router.post("/batches/{batch_id}/signature", response_model=SignatureUploadResponse)
def upload_signature(
    batch_id: int,
    user: StaffUser,
    db: DbSession,
    storage: Storage,
    scheduler: Scheduler,
    background_tasks: BackgroundTasks,
    signature_type: str = Query(..., alias="type"),
    file: UploadFile = File(...),
):
    """Upload a teacher or principal signature image (?type=teacher|principal)."""
    _validate_upload(file, settings.ALLOWED_SIGNATURE_EXTENSIONS)

    service = ResultBatchService(db, storage)
    batch, signature_url, replaced_key = service.upload_signature(
        batch_id,
        signature_type,
        file.file,
        file.filename,
        file.content_type,
        user.id,
    )
    if replaced_key:
        cleanup = ArtifactCleanupService(storage, scheduler)
        background_tasks.add_task(cleanup.cleanup, [replaced_key])

    return SignatureUploadResponse(
        message=f"{signature_type.capitalize()} signature uploaded successfully",
        signature_url=signature_url,
        batch=service.to_response(batch),
    )


@router.get("/batches/{batch_id}/template")
def download_batch_template(
    batch_id: int,
    user: StaffUser,
    db: DbSession,
    file_format: Literal["csv", "xlsx"] = Query("csv", alias="format"),
):
    """
    Download a blank score sheet for the batch.

    Columns: user_id, email, first_name, last_name, then {CODE}_CA and
    {CODE}_EXAM for every subject of the batch's subject group.
    """
    service = ResultBatchService(db)
    if file_format == "xlsx":
        filename, content = service.generate_xlsx_template(batch_id)
        media_type = XLSX_MEDIA_TYPE
    else:
        filename, text = service.generate_csv_template(batch_id)
        content = text.encode("utf-8")
        media_type = "text/csv"

    return StreamingResponse(
        BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/batches/{batch_id}/upload", response_model=BatchImportResult)
def upload_batch_scores(
    batch_id: int,
    user: StaffUser,
    session_factory: SessionFactory,
    storage: Storage,
    scheduler: Scheduler,
    background_tasks: BackgroundTasks,
    http_request: Request,
    file: UploadFile = File(...),
):
    """
    Import a filled score sheet (.csv or .xlsx) into the batch.

    - Rows with bad cells or unknown students are reported, the rest import
    - Re-uploading overwrites existing scores for the same student and subject
    - Parsing is aborted with PARSE_TIMEOUT after the configured time limit
    - ``failed`` counts rows whose student or subject could not be resolved;
      ``errors`` also lists cells rejected while parsing
    - Error ``line`` numbers are spreadsheet rows: the header is line 1, so
      the first data row is line 2 (one more than a count of data rows)
    """
    _validate_upload(file, settings.ALLOWED_RESULT_EXTENSIONS)

    with session_factory() as db:
        ResultBatchService(db).get_batch(batch_id)

    stored = storage.upload_file(
        file.file,
        file.filename,
        file.content_type,
        settings.RESULT_CSV_FOLDER,
        metadata={"batch_id": str(batch_id), "uploaded_by": str(user.id)},
    )
    file.file.seek(0)

    cleanup = ArtifactCleanupService(storage, scheduler)
    service = ResultImportService(session_factory)
    try:
        result = service.import_batch(
            batch_id,
            iter_score_sheet_rows(file.file, file.filename),
            user.id,
            file_url=stored.file_url,
            ip_address=_client_ip(http_request),
        )
    except Exception:
        # Nothing references the sheet once the import is refused or rolled back
        cleanup.cleanup([stored.file_key])
        raise

    replaced_key = key_from_url(result.replaced_file_url, storage.public_url)
    if replaced_key:
        background_tasks.add_task(cleanup.cleanup, [replaced_key])
    return result


@router.post("/batches/{batch_id}/publish", response_model=BatchResponse)
def publish_batch(batch_id: int, user: StaffUser, db: DbSession):
    """Publish a completed batch so students and parents can see its results."""
    service = ResultBatchService(db)
    batch = service.publish_batch(batch_id, user.id)
    return service.to_response(batch)


@router.patch("/batches/{batch_id}/status", response_model=BatchResponse)
def override_batch_status(
    batch_id: int,
    request: BatchStatusUpdate,
    user: AdminUser,
    db: DbSession,
):
    """Administrative override: set any status without lifecycle checks."""
    service = ResultBatchService(db)
    batch = service.override_status(batch_id, request.status, user.id)
    return service.to_response(batch)


@router.get("/batches/{batch_id}/results", response_model=BatchResultsResponse)
def get_batch_results(batch_id: int, user: StaffUser, db: DbSession):
    """All results of the batch's classroom, academic year and term."""
    service = ResultBatchService(db)
    batch = service.get_batch(batch_id)
    return BatchResultsResponse(
        batch=service.to_response(batch),
        results=ResultQueryService(db).get_batch_results(batch),
    )
