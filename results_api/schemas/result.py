"""Result batch, import and report card schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field

from results_api.models.result import BatchStatus
from results_api.schemas.common import BaseSchema, TimestampSchema


# ==========================================
# Result Batches
# ==========================================

class BatchCreate(BaseSchema):
    """Result batch creation schema."""

    batch_name: str = Field(..., min_length=1, max_length=200)
    classroom_id: int
    academic_year: str = Field(..., min_length=1, max_length=20)
    term: str = Field(..., min_length=1, max_length=20)
    grading_scale_id: int
    subject_group_id: int
    teacher_name: str | None = Field(None, max_length=200)
    principal_name: str | None = Field(None, max_length=200)


class BatchUpdate(BaseSchema):
    """Result batch update schema (all descriptive fields are required)."""

    batch_name: str = Field(..., min_length=1, max_length=200)
    classroom_id: int
    academic_year: str = Field(..., min_length=1, max_length=20)
    term: str = Field(..., min_length=1, max_length=20)
    grading_scale_id: int
    subject_group_id: int


class BatchSignatureUpdate(BaseSchema):
    """Partial update of report card names and signatures."""

    teacher_name: str | None = Field(None, max_length=200)
    principal_name: str | None = Field(None, max_length=200)
    teacher_signature_url: str | None = None
    principal_signature_url: str | None = None


class BatchStatusUpdate(BaseSchema):
    """Administrative status override."""

    status: BatchStatus


class BatchFilter(BaseSchema):
    """Result batch filtering options."""

    classroom_id: int | None = None
    academic_year: str | None = None
    term: str | None = None
    status: BatchStatus | None = None
    created_by: int | None = None


class BatchResponse(TimestampSchema):
    """Result batch response schema."""

    id: int
    batch_name: str
    batch_code: str
    classroom_id: int
    classroom_name: str | None = None
    academic_year: str
    term: str
    grading_scale_id: int
    grading_scale_name: str | None = None
    subject_group_id: int
    subject_group_name: str | None = None
    status: BatchStatus
    csv_file_path: str | None
    error_log: list[dict[str, Any]] = []
    total_students: int
    total_subjects: int
    total_results: int
    failed_imports: int
    processed_at: datetime | None
    published_at: datetime | None
    teacher_name: str | None
    principal_name: str | None
    teacher_signature_url: str | None
    principal_signature_url: str | None
    created_by: int
    created_by_name: str | None = None
    updated_by: int | None


class SignatureUploadResponse(BaseSchema):
    """Result of a signature image upload."""

    message: str
    signature_url: str
    batch: BatchResponse


# ==========================================
# Score Sheet Import
# ==========================================

class ParsedScoreRecord(BaseSchema):
    """One student's scores for one subject, read from a score sheet row."""

    line: int
    user_id: str | None = None
    email: str | None = None
    subject_code: str
    ca_score: Decimal
    exam_score: Decimal
    total_score: Decimal


class ImportRowError(BaseSchema):
    """A row (or row/subject pair) that could not be imported."""

    line: int | None = None
    subject_code: str | None = None
    error: str
    data: dict[str, Any] = {}


class ParsedScoreSheet(BaseSchema):
    """Outcome of parsing a score sheet."""

    records: list[ParsedScoreRecord] = []
    errors: list[ImportRowError] = []
    rows_read: int = 0


class BatchImportResult(BaseSchema):
    """Result of importing a score sheet into a batch."""

    success: bool = True
    message: str
    imported: int
    failed: int
    errors: list[ImportRowError] = []
    # Score sheet this import superseded; never sent to clients
    replaced_file_url: str | None = Field(None, exclude=True)


# ==========================================
# Results & Report Cards
# ==========================================

class StudentResultResponse(BaseSchema):
    """Student result joined with student and subject names."""

    id: int
    classroom_id: int
    student_id: int
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    subject_id: int
    subject_name: str | None = None
    subject_code: str | None = None
    academic_year: str
    term: str
    ca_score: Decimal
    exam_score: Decimal
    total_score: Decimal
    grade: str | None
    remark: str | None
    teacher_id: int | None
    updated_at: datetime


class ResultRecordInput(BaseSchema):
    """Scores of one student in one subject."""

    student_id: int
    subject_id: int
    ca_score: Decimal = Field(..., ge=0, max_digits=5, decimal_places=2)
    exam_score: Decimal = Field(..., ge=0, max_digits=5, decimal_places=2)


class ResultRecordImport(BaseSchema):
    """Scores for a classroom's current academic year and term, graded on one scale."""

    classroom_id: int
    grading_scale_id: int
    results: list[ResultRecordInput] = Field(..., min_length=1)


class ResultRecordImportResponse(BaseSchema):
    message: str
    count: int
    results: list[StudentResultResponse]


class ResultScope(BaseSchema):
    """Optional academic period filter for result queries."""

    academic_year: str | None = None
    term: str | None = None


class ReportCardStudent(BaseSchema):
    """Student header of a report card."""

    id: int
    first_name: str
    last_name: str
    email: str
    enrollment_number: str | None = None
    roll_number: str | None = None


class ReportCardClassroom(BaseSchema):
    """Classroom header of a report card."""

    id: int
    name: str
    level: str | None = None
    section: str | None = None
    academic_year: str | None = None
    academic_term: str | None = None


class ReportCardResponse(BaseSchema):
    """Student report card."""

    student: ReportCardStudent
    classroom: ReportCardClassroom | None
    results: list[StudentResultResponse]


class BatchResultsResponse(BaseSchema):
    """A batch together with the results of its classroom/year/term."""

    batch: BatchResponse
    results: list[StudentResultResponse]
