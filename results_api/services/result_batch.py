"""Result batch lifecycle service."""

import csv
import io
import logging
import re
from typing import BinaryIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from results_api.core.config import settings
from results_api.core.exceptions import ConflictError, NotFoundError, ValidationError
from results_api.core.storage import StorageClient, key_from_url
from results_api.models.audit import AuditAction
from results_api.models.base import utcnow
from results_api.models.classroom import Classroom, ClassroomStudent
from results_api.models.grading import GradingScale
from results_api.models.result import BatchStatus, ResultBatch, StudentResult
from results_api.models.subject import Subject, SubjectGroup, SubjectGroupSubject
from results_api.models.user import User
from results_api.schemas.result import (
    BatchCreate,
    BatchFilter,
    BatchResponse,
    BatchSignatureUpdate,
    BatchUpdate,
)
from results_api.services.audit import AuditService
from results_api.services.score_sheet import template_header

logger = logging.getLogger(__name__)

SIGNATURE_TYPES = ("teacher", "principal")


def format_batch_code(prefix: str, academic_year: str, term: str, sequence: int) -> str:
    """Build ``{PREFIX}-{year4}-T{termDigits}-{seq3}``.

    >>> format_batch_code("RB", "2024/2025", "Term 2", 7)
    'RB-2024-T2-007'
    """
    year = re.sub(r"\D", "", academic_year)[:4]
    term_digits = re.sub(r"\D", "", term) or "1"
    return f"{prefix}-{year}-T{term_digits}-{sequence:03d}"


class ResultBatchService:
    """Result batch management service."""

    def __init__(self, db: Session, storage: StorageClient | None = None):
        self.db = db
        self.storage = storage

    # ==========================================
    # Queries
    # ==========================================

    def get_batch(self, batch_id: int) -> ResultBatch:
        batch = self.db.get(ResultBatch, batch_id)
        if not batch:
            raise NotFoundError("Result batch", str(batch_id))
        return batch

    def _live_counts(self, batch: ResultBatch) -> dict[str, int]:
        """Current roster, subject group and result counts for a batch's scope."""
        total_students = self.db.scalar(
            select(func.count())
            .select_from(ClassroomStudent)
            .where(ClassroomStudent.classroom_id == batch.classroom_id)
        )
        total_subjects = self.db.scalar(
            select(func.count())
            .select_from(SubjectGroupSubject)
            .where(SubjectGroupSubject.subject_group_id == batch.subject_group_id)
        )
        total_results = self.db.scalar(
            select(func.count())
            .select_from(StudentResult)
            .where(
                StudentResult.classroom_id == batch.classroom_id,
                StudentResult.academic_year == batch.academic_year,
                StudentResult.term == batch.term,
            )
        )
        return {
            "total_students": total_students or 0,
            "total_subjects": total_subjects or 0,
            "total_results": total_results or 0,
        }

    def to_response(self, batch: ResultBatch, live_counts: bool = True) -> BatchResponse:
        """Convert a batch to its response, optionally with live counts."""
        counts = (
            self._live_counts(batch)
            if live_counts
            else {
                "total_students": batch.total_students,
                "total_subjects": batch.total_subjects,
                "total_results": batch.total_results,
            }
        )
        return BatchResponse(
            id=batch.id,
            batch_name=batch.batch_name,
            batch_code=batch.batch_code,
            classroom_id=batch.classroom_id,
            classroom_name=batch.classroom.name if batch.classroom else None,
            academic_year=batch.academic_year,
            term=batch.term,
            grading_scale_id=batch.grading_scale_id,
            grading_scale_name=batch.grading_scale.name if batch.grading_scale else None,
            subject_group_id=batch.subject_group_id,
            subject_group_name=batch.subject_group.name if batch.subject_group else None,
            status=batch.status,
            csv_file_path=batch.csv_file_path,
            error_log=batch.error_log or [],
            failed_imports=batch.failed_imports,
            processed_at=batch.processed_at,
            published_at=batch.published_at,
            teacher_name=batch.teacher_name,
            principal_name=batch.principal_name,
            teacher_signature_url=batch.teacher_signature_url,
            principal_signature_url=batch.principal_signature_url,
            created_by=batch.created_by,
            created_by_name=batch.creator.full_name if batch.creator else None,
            updated_by=batch.updated_by,
            created_at=batch.created_at,
            updated_at=batch.updated_at,
            **counts,
        )

    def list_batches(
        self,
        filters: BatchFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[BatchResponse], int]:
        """List batches, newest first, with live counts."""
        query = select(ResultBatch)

        if filters:
            if filters.classroom_id:
                query = query.where(ResultBatch.classroom_id == filters.classroom_id)
            if filters.academic_year:
                query = query.where(ResultBatch.academic_year == filters.academic_year)
            if filters.term:
                query = query.where(ResultBatch.term == filters.term)
            if filters.status:
                query = query.where(ResultBatch.status == filters.status)
            if filters.created_by:
                query = query.where(ResultBatch.created_by == filters.created_by)

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0

        query = (
            query
            .order_by(ResultBatch.created_at.desc(), ResultBatch.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        batches = self.db.execute(query).scalars().all()
        return [self.to_response(batch) for batch in batches], total

    # ==========================================
    # Create / Update
    # ==========================================

    def _validate_references(
        self,
        classroom_id: int,
        grading_scale_id: int,
        subject_group_id: int,
    ) -> None:
        if not self.db.get(Classroom, classroom_id):
            raise NotFoundError("Classroom", str(classroom_id))
        if not self.db.get(GradingScale, grading_scale_id):
            raise NotFoundError("Grading scale", str(grading_scale_id))
        if not self.db.get(SubjectGroup, subject_group_id):
            raise NotFoundError("Subject group", str(subject_group_id))

    def _next_sequence(self, classroom_id: int, academic_year: str, term: str) -> int:
        count = self.db.scalar(
            select(func.count())
            .select_from(ResultBatch)
            .where(
                ResultBatch.classroom_id == classroom_id,
                ResultBatch.academic_year == academic_year,
                ResultBatch.term == term,
            )
        )
        return (count or 0) + 1

    def create_batch(self, data: BatchCreate, user_id: int) -> ResultBatch:
        """Create a draft batch with the next free code for its scope.

        The code is reserved by the unique constraint: each attempt is
        inserted in a savepoint and a collision moves on to the next sequence.
        """
        self._validate_references(data.classroom_id, data.grading_scale_id, data.subject_group_id)

        roster_size = self.db.scalar(
            select(func.count())
            .select_from(ClassroomStudent)
            .where(ClassroomStudent.classroom_id == data.classroom_id)
        ) or 0

        sequence = self._next_sequence(data.classroom_id, data.academic_year, data.term)
        batch = None
        for _ in range(settings.BATCH_CODE_MAX_ATTEMPTS):
            code = format_batch_code(
                settings.BATCH_CODE_PREFIX, data.academic_year, data.term, sequence
            )
            candidate = ResultBatch(
                batch_name=data.batch_name,
                batch_code=code,
                classroom_id=data.classroom_id,
                academic_year=data.academic_year,
                term=data.term,
                grading_scale_id=data.grading_scale_id,
                subject_group_id=data.subject_group_id,
                status=BatchStatus.DRAFT,
                total_students=roster_size,
                teacher_name=data.teacher_name,
                principal_name=data.principal_name,
                created_by=user_id,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(candidate)
                    self.db.flush()
            except IntegrityError:
                logger.warning(f"Batch code {code} already taken, retrying")
                sequence += 1
                continue
            batch = candidate
            break

        if batch is None:
            raise ConflictError(
                "Could not allocate a unique batch code, please retry",
                details={"attempts": settings.BATCH_CODE_MAX_ATTEMPTS},
            )

        AuditService(self.db).log(
            action=AuditAction.BATCH_CREATED,
            resource_type="result_batch",
            resource_id=batch.id,
            user_id=user_id,
            description=f"Created result batch {batch.batch_code}",
            metadata={"batch_code": batch.batch_code, "classroom_id": batch.classroom_id},
        )
        logger.info(f"Result batch {batch.batch_code} created by user {user_id}")
        return batch

    def update_batch(self, batch_id: int, data: BatchUpdate, user_id: int) -> ResultBatch:
        """Replace a batch's descriptive fields."""
        batch = self.get_batch(batch_id)
        self._validate_references(data.classroom_id, data.grading_scale_id, data.subject_group_id)

        for field, value in data.model_dump().items():
            setattr(batch, field, value)
        batch.updated_by = user_id
        self.db.flush()
        self.db.refresh(batch)

        AuditService(self.db).log(
            action=AuditAction.BATCH_UPDATED,
            resource_type="result_batch",
            resource_id=batch.id,
            user_id=user_id,
            description=f"Updated result batch {batch.batch_code}",
        )
        logger.info(f"Result batch {batch_id} updated by user {user_id}")
        return batch

    def update_signatures(
        self,
        batch_id: int,
        data: BatchSignatureUpdate,
        user_id: int,
    ) -> ResultBatch:
        """Partially update report card names and signature URLs."""
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No fields to update")

        batch = self.get_batch(batch_id)
        for field, value in fields.items():
            setattr(batch, field, value)
        batch.updated_by = user_id
        self.db.flush()

        logger.info(f"Signatures of batch {batch_id} updated: {sorted(fields)}")
        return batch

    def upload_signature(
        self,
        batch_id: int,
        signature_type: str,
        fileobj: BinaryIO,
        filename: str,
        content_type: str | None,
        user_id: int,
    ) -> tuple[ResultBatch, str, str | None]:
        """Store a signature image and point the batch at it.

        Returns the batch, the new URL and the storage key of the replaced
        image (if it was one of ours) so the caller can clean it up.
        """
        if signature_type not in SIGNATURE_TYPES:
            raise ValidationError(
                'Invalid signature type. Must be "teacher" or "principal"',
                details={"type": signature_type},
            )
        batch = self.get_batch(batch_id)
        field = f"{signature_type}_signature_url"
        replaced_key = self._artifact_key(getattr(batch, field))

        stored = self.storage.upload_file(
            fileobj,
            filename,
            content_type,
            settings.SIGNATURE_FOLDER,
            metadata={"batch_id": str(batch_id), "type": signature_type},
        )
        batch = self.update_signatures(
            batch_id,
            BatchSignatureUpdate(**{field: stored.file_url}),
            user_id,
        )
        return batch, stored.file_url, replaced_key

    # ==========================================
    # Lifecycle
    # ==========================================

    def publish_batch(self, batch_id: int, user_id: int) -> ResultBatch:
        """Make a completed batch's results visible to students and parents."""
        batch = self.get_batch(batch_id)
        if batch.status != BatchStatus.COMPLETED:
            raise ConflictError(
                f"Only completed batches can be published (current status: {batch.status.value})",
                details={"status": batch.status.value},
            )

        batch.status = BatchStatus.PUBLISHED
        batch.published_at = utcnow()
        batch.updated_by = user_id
        self.db.flush()

        AuditService(self.db).log(
            action=AuditAction.BATCH_PUBLISHED,
            resource_type="result_batch",
            resource_id=batch.id,
            user_id=user_id,
            description=f"Published result batch {batch.batch_code}",
        )
        logger.info(f"Result batch {batch.batch_code} published by user {user_id}")
        return batch

    def override_status(self, batch_id: int, status: BatchStatus, user_id: int) -> ResultBatch:
        """Administrative status change without transition checks."""
        batch = self.get_batch(batch_id)
        previous = batch.status
        batch.status = status
        batch.updated_by = user_id
        self.db.flush()

        AuditService(self.db).log(
            action=AuditAction.BATCH_STATUS_OVERRIDDEN,
            resource_type="result_batch",
            resource_id=batch.id,
            user_id=user_id,
            description=f"Status of {batch.batch_code} changed from {previous.value} to {status.value}",
            metadata={"from": previous.value, "to": status.value},
        )
        logger.warning(
            f"Result batch {batch.batch_code} status overridden {previous.value} -> {status.value} by user {user_id}"
        )
        return batch

    def _artifact_key(self, url: str | None) -> str | None:
        public_url = self.storage.public_url if self.storage else settings.STORAGE_PUBLIC_URL
        return key_from_url(url, public_url)

    def delete_batch(self, batch_id: int, user_id: int) -> list[str]:
        """Delete a batch and every result of its classroom, year and term.

        Commits before returning. The returned storage keys belong to files
        that are no longer referenced and should be removed afterwards.
        """
        batch = self.get_batch(batch_id)
        artifact_keys = [
            key for key in (self._artifact_key(url) for url in batch.artifact_urls()) if key
        ]
        batch_code = batch.batch_code

        removed = self.db.execute(
            delete(StudentResult)
            .where(
                StudentResult.classroom_id == batch.classroom_id,
                StudentResult.academic_year == batch.academic_year,
                StudentResult.term == batch.term,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        self.db.delete(batch)

        AuditService(self.db).log(
            action=AuditAction.BATCH_DELETED,
            resource_type="result_batch",
            resource_id=batch_id,
            user_id=user_id,
            description=f"Deleted result batch {batch_code} and {removed} results",
            metadata={"batch_code": batch_code, "results_deleted": removed},
        )
        self.db.commit()

        logger.info(f"Result batch {batch_code} deleted with {removed} results by user {user_id}")
        return artifact_keys

    # ==========================================
    # Templates
    # ==========================================

    def _template_data(self, batch: ResultBatch) -> tuple[list[str], list[User]]:
        """Subject codes of the batch's group and the enrolled students."""
        subject_codes = list(
            self.db.execute(
                select(Subject.code)
                .join(SubjectGroupSubject, SubjectGroupSubject.subject_id == Subject.id)
                .where(SubjectGroupSubject.subject_group_id == batch.subject_group_id)
                .order_by(Subject.name)
            ).scalars()
        )
        if not subject_codes:
            raise ValidationError("Subject group has no subjects assigned")

        students = list(
            self.db.execute(
                select(User)
                .join(ClassroomStudent, ClassroomStudent.student_id == User.id)
                .where(ClassroomStudent.classroom_id == batch.classroom_id)
                .order_by(User.last_name, User.first_name)
            ).scalars()
        )
        return subject_codes, students

    def generate_csv_template(self, batch_id: int) -> tuple[str, str]:
        """Return ``(filename, csv_text)`` of a blank score sheet for a batch."""
        batch = self.get_batch(batch_id)
        subject_codes, students = self._template_data(batch)

        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")
        writer.writerow(template_header(subject_codes))
        for student in students:
            writer.writerow(
                [student.id, student.email, student.first_name, student.last_name]
                + [""] * (2 * len(subject_codes))
            )

        logger.info(f"CSV template generated for batch {batch.batch_code} ({len(students)} students)")
        return f"result-template-{batch.batch_code}.csv", output.getvalue()

    def generate_xlsx_template(self, batch_id: int) -> tuple[str, bytes]:
        """Return ``(filename, xlsx_bytes)`` of a blank score sheet for a batch."""
        batch = self.get_batch(batch_id)
        subject_codes, students = self._template_data(batch)

        wb = Workbook()
        ws = wb.active
        ws.title = "Scores"

        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
        thin_border = Border(
            left=Side(style="thin"),
            right=Side(style="thin"),
            top=Side(style="thin"),
            bottom=Side(style="thin"),
        )

        headers = template_header(subject_codes)
        for col_idx, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.border = thin_border
            cell.alignment = Alignment(horizontal="center", vertical="center")
            ws.column_dimensions[get_column_letter(col_idx)].width = max(12, len(header) + 2)

        for row_idx, student in enumerate(students, start=2):
            values = [student.id, student.email, student.first_name, student.last_name]
            for col_idx, value in enumerate(values, start=1):
                ws.cell(row=row_idx, column=col_idx, value=value).border = thin_border
            for col_idx in range(len(values) + 1, len(headers) + 1):
                ws.cell(row=row_idx, column=col_idx).border = thin_border

        ws.column_dimensions["B"].width = 30
        ws.freeze_panes = "E2"

        output = io.BytesIO()
        wb.save(output)
        logger.info(f"Excel template generated for batch {batch.batch_code} ({len(students)} students)")
        return f"result-template-{batch.batch_code}.xlsx", output.getvalue()
