"""Score sheet import into a result batch."""

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from results_api.core.config import settings
from results_api.core.exceptions import (
    AppException,
    ConflictError,
    ImportFailedError,
    NotFoundError,
    ValidationError,
)
from results_api.models.audit import AuditAction
from results_api.models.base import utcnow
from results_api.models.classroom import Classroom, ClassroomStudent
from results_api.models.grading import GradingScale
from results_api.models.result import IMPORTABLE_STATUSES, BatchStatus, ResultBatch, StudentResult
from results_api.models.subject import Subject, SubjectGroupSubject
from results_api.models.user import User
from results_api.schemas.result import (
    BatchImportResult,
    ImportRowError,
    ParsedScoreRecord,
    ResultRecordImport,
)
from results_api.services.audit import AuditService
from results_api.services.grading import resolve_grade
from results_api.services.score_sheet import MAX_SCORE, parse_score_rows

logger = logging.getLogger(__name__)

NATURAL_KEY = ("classroom_id", "student_id", "subject_id", "academic_year", "term")


def upsert_student_result(db: Session, values: dict[str, Any]) -> None:
    """Insert a result, overwriting scores, grade and teacher on natural-key conflict."""
    dialect = db.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert

    stmt = insert(StudentResult).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(NATURAL_KEY),
        set_={
            "ca_score": stmt.excluded.ca_score,
            "exam_score": stmt.excluded.exam_score,
            "total_score": stmt.excluded.total_score,
            "grade": stmt.excluded.grade,
            "remark": stmt.excluded.remark,
            "teacher_id": stmt.excluded.teacher_id,
            "updated_at": utcnow(),
        },
    )
    db.execute(stmt)


class ResultImportService:
    """Imports a parsed score sheet into a batch's classroom, year and term.

    The import uses three units of work so that polling clients see progress:

    1. ``processing`` is committed before any parsing starts.
    2. Parsing, result upserts and batch statistics commit together.
    3. If step 2 fails it is rolled back and ``failed`` is committed on its own.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.CSV_PARSE_TIMEOUT_SECONDS
        )
        self.clock = clock

    def import_batch(
        self,
        batch_id: int,
        rows: Iterable[dict[str, str]],
        user_id: int,
        file_url: str | None = None,
        ip_address: str | None = None,
    ) -> BatchImportResult:
        """Import score sheet rows into a batch.

        Per-row problems are reported in the result and do not fail the
        import. ``failed`` counts only records whose student or subject could
        not be resolved; ``errors`` also lists the rows rejected while parsing.
        Any other error marks the batch ``failed`` and is re-raised;
        unexpected errors are wrapped in ``ImportFailedError``.
        """
        self._mark_processing(batch_id, user_id)
        logger.info(f"[RESULT IMPORT] Batch {batch_id} marked processing by user {user_id}")

        db = self.session_factory()
        try:
            result = self._run_import(db, batch_id, rows, user_id, file_url, ip_address)
            db.commit()
        except Exception as e:
            db.rollback()
            message = e.message if isinstance(e, AppException) else str(e)
            logger.error(f"[RESULT IMPORT] Batch {batch_id} failed: {message}")
            self._mark_failed(batch_id, message, user_id, ip_address)
            if isinstance(e, AppException):
                raise
            raise ImportFailedError(f"Failed to import results: {message}") from e
        finally:
            db.close()

        logger.info(
            f"[RESULT IMPORT] Batch {batch_id} completed - imported={result.imported}, failed={result.failed}"
        )
        return result

    # ==========================================
    # Status transitions outside the import transaction
    # ==========================================

    def _mark_processing(self, batch_id: int, user_id: int) -> None:
        """Check preconditions and claim the batch for this import."""
        with self.session_factory() as db:
            batch = db.get(ResultBatch, batch_id)
            if batch is None:
                raise NotFoundError("Result batch", str(batch_id))

            subject_count = db.scalar(
                select(func.count())
                .select_from(SubjectGroupSubject)
                .where(SubjectGroupSubject.subject_group_id == batch.subject_group_id)
            )
            if not subject_count:
                raise ValidationError(
                    "Subject group has no subjects",
                    details={"subject_group_id": batch.subject_group_id},
                )

            scale = db.get(GradingScale, batch.grading_scale_id)
            if scale is None:
                raise ValidationError(
                    "Grading scale not found",
                    details={"grading_scale_id": batch.grading_scale_id},
                )
            try:
                bands = scale.bands
            except ValueError as e:
                raise ValidationError(f"Invalid grading scale configuration: {e}")
            if not bands:
                raise ValidationError("Grading scale has no grade bands")

            claimed = db.execute(
                update(ResultBatch)
                .where(
                    ResultBatch.id == batch_id,
                    ResultBatch.status.in_(IMPORTABLE_STATUSES),
                )
                .values(status=BatchStatus.PROCESSING, updated_by=user_id)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                raise ConflictError(
                    f"Cannot import results while batch is {batch.status.value}",
                    details={"status": batch.status.value},
                )
            db.commit()

    def _mark_failed(
        self,
        batch_id: int,
        message: str,
        user_id: int,
        ip_address: str | None,
    ) -> None:
        try:
            with self.session_factory() as db:
                db.execute(
                    update(ResultBatch)
                    .where(ResultBatch.id == batch_id)
                    .values(
                        status=BatchStatus.FAILED,
                        error_log=[{"error": message}],
                        updated_by=user_id,
                    )
                    .execution_options(synchronize_session=False)
                )
                AuditService(db).log(
                    action=AuditAction.UPLOAD_FAILED,
                    resource_type="result_batch",
                    resource_id=batch_id,
                    user_id=user_id,
                    description=f"Result import failed: {message}",
                    ip_address=ip_address,
                )
                db.commit()
        except Exception:
            # The import error is what the caller needs to see
            logger.exception(f"[RESULT IMPORT] Could not mark batch {batch_id} as failed")

    # ==========================================
    # Import transaction
    # ==========================================

    def _run_import(
        self,
        db: Session,
        batch_id: int,
        rows: Iterable[dict[str, str]],
        user_id: int,
        file_url: str | None,
        ip_address: str | None,
    ) -> BatchImportResult:
        batch = db.get(ResultBatch, batch_id)
        if batch is None:
            raise NotFoundError("Result batch", str(batch_id))

        scale = db.get(GradingScale, batch.grading_scale_id)
        if scale is None:
            raise ImportFailedError("Grading scale not found")
        bands = scale.bands

        subject_codes = list(
            db.execute(
                select(Subject.code)
                .join(SubjectGroupSubject, SubjectGroupSubject.subject_id == Subject.id)
                .where(SubjectGroupSubject.subject_group_id == batch.subject_group_id)
                .order_by(Subject.name)
            ).scalars()
        )
        logger.debug(f"[RESULT IMPORT] Expected subjects for batch {batch_id}: {subject_codes}")

        parsed = parse_score_rows(rows, subject_codes, self.timeout_seconds, clock=self.clock)

        enrolled = set(
            db.execute(
                select(ClassroomStudent.student_id).where(
                    ClassroomStudent.classroom_id == batch.classroom_id
                )
            ).scalars()
        )
        active_subjects = {
            subject.code: subject
            for subject in db.execute(
                select(Subject).where(Subject.code.in_(subject_codes), Subject.is_active.is_(True))
            ).scalars()
        }

        failures: list[ImportRowError] = []
        students: set[int] = set()
        subjects: set[int] = set()
        imported = 0
        student_cache: dict[tuple[str, str], int | None] = {}

        for record in parsed.records:
            student_id = self._find_student(db, record, student_cache)
            if student_id is None:
                failures.append(self._failure(record, "Student not found"))
                continue

            if student_id not in enrolled:
                failures.append(self._failure(record, "Student not enrolled in this classroom"))
                continue

            subject = active_subjects.get(record.subject_code)
            if subject is None:
                failures.append(self._failure(record, f"Subject not found: {record.subject_code}"))
                continue

            grade, remark = resolve_grade(record.total_score, bands)
            upsert_student_result(
                db,
                {
                    "classroom_id": batch.classroom_id,
                    "student_id": student_id,
                    "subject_id": subject.id,
                    "academic_year": batch.academic_year,
                    "term": batch.term,
                    "ca_score": record.ca_score,
                    "exam_score": record.exam_score,
                    "total_score": record.total_score,
                    "grade": grade,
                    "remark": remark,
                    "teacher_id": user_id,
                },
            )
            imported += 1
            students.add(student_id)
            subjects.add(subject.id)

        for failure in failures:
            logger.warning(f"[RESULT IMPORT] Line {failure.line} {failure.subject_code}: {failure.error}")

        errors = parsed.errors + failures
        replaced_file_url = batch.csv_file_path if batch.csv_file_path != file_url else None
        batch.status = BatchStatus.COMPLETED
        batch.total_students = len(students)
        batch.total_subjects = len(subjects)
        batch.total_results = imported
        batch.failed_imports = len(failures)
        batch.error_log = [error.model_dump(mode="json") for error in errors]
        batch.processed_at = utcnow()
        batch.csv_file_path = file_url
        batch.updated_by = user_id
        db.flush()

        AuditService(db).log(
            action=AuditAction.UPLOAD_COMPLETED,
            resource_type="result_batch",
            resource_id=batch.id,
            user_id=user_id,
            description=f"Imported {imported} results into {batch.batch_code} ({len(failures)} failed)",
            metadata={
                "file_url": file_url,
                "imported": imported,
                "failed": len(failures),
                "errors": len(errors),
                "rows_read": parsed.rows_read,
            },
            ip_address=ip_address,
        )

        return BatchImportResult(
            success=True,
            message=f"Imported {imported} results with {len(errors)} errors",
            imported=imported,
            failed=len(failures),
            errors=errors,
            replaced_file_url=replaced_file_url,
        )

    def _find_student(
        self,
        db: Session,
        record: ParsedScoreRecord,
        cache: dict[tuple[str, str], int | None],
    ) -> int | None:
        """Resolve a student by user id, falling back to email when no id is given."""
        if record.user_id:
            key = ("id", record.user_id)
        else:
            key = ("email", (record.email or "").lower())

        if key not in cache:
            if key[0] == "id":
                try:
                    user_id = int(key[1])
                except ValueError:
                    cache[key] = None
                    return None
                query = select(User.id).where(User.id == user_id)
            else:
                query = select(User.id).where(func.lower(User.email) == key[1])
            cache[key] = db.execute(query).scalar_one_or_none()
        return cache[key]

    @staticmethod
    def _failure(record: ParsedScoreRecord, error: str) -> ImportRowError:
        return ImportRowError(
            line=record.line,
            subject_code=record.subject_code,
            error=error,
            data={
                "user_id": record.user_id,
                "email": record.email,
                "subject": record.subject_code,
                "ca_score": str(record.ca_score),
                "exam_score": str(record.exam_score),
            },
        )


class ResultRecordService:
    """Grades and stores result records sent directly as JSON.

    Records land in the classroom's current academic year and term. The
    whole request is one transaction: an unknown student or subject rejects
    every record.
    """

    def __init__(self, db: Session):
        self.db = db

    def import_records(self, request: ResultRecordImport, teacher_id: int) -> list[StudentResult]:
        classroom = self.db.get(Classroom, request.classroom_id)
        if classroom is None:
            raise NotFoundError("Classroom", str(request.classroom_id))
        if not classroom.academic_year or not classroom.academic_term:
            raise ValidationError(
                "Classroom has no current academic year and term",
                details={"classroom_id": classroom.id},
            )

        scale = self.db.get(GradingScale, request.grading_scale_id)
        if scale is None:
            raise NotFoundError("Grading scale", str(request.grading_scale_id))
        try:
            bands = scale.bands
        except ValueError as e:
            raise ValidationError(f"Invalid grading scale configuration: {e}")

        student_ids = {record.student_id for record in request.results}
        subject_ids = {record.subject_id for record in request.results}
        known_students = set(
            self.db.execute(select(User.id).where(User.id.in_(student_ids))).scalars()
        )
        known_subjects = set(
            self.db.execute(select(Subject.id).where(Subject.id.in_(subject_ids))).scalars()
        )
        missing_students = sorted(student_ids - known_students)
        missing_subjects = sorted(subject_ids - known_subjects)
        if missing_students or missing_subjects:
            raise ValidationError(
                "One or more students or subjects not found",
                details={
                    "missing_student_ids": missing_students,
                    "missing_subject_ids": missing_subjects,
                },
            )

        for record in request.results:
            total_score = record.ca_score + record.exam_score
            if total_score > MAX_SCORE:
                raise ValidationError(
                    f"Total score out of range: {total_score}",
                    details={"student_id": record.student_id, "subject_id": record.subject_id},
                )
            grade, remark = resolve_grade(total_score, bands)
            upsert_student_result(
                self.db,
                {
                    "classroom_id": classroom.id,
                    "student_id": record.student_id,
                    "subject_id": record.subject_id,
                    "academic_year": classroom.academic_year,
                    "term": classroom.academic_term,
                    "ca_score": record.ca_score,
                    "exam_score": record.exam_score,
                    "total_score": total_score,
                    "grade": grade,
                    "remark": remark,
                    "teacher_id": teacher_id,
                },
            )

        keys = {(record.student_id, record.subject_id) for record in request.results}
        stored = self.db.execute(
            select(StudentResult)
            .where(
                StudentResult.classroom_id == classroom.id,
                StudentResult.academic_year == classroom.academic_year,
                StudentResult.term == classroom.academic_term,
                StudentResult.student_id.in_(student_ids),
                StudentResult.subject_id.in_(subject_ids),
            )
            .order_by(StudentResult.student_id, StudentResult.subject_id)
            .execution_options(populate_existing=True)
        ).scalars().all()

        logger.info(
            f"[RESULT IMPORT] {len(keys)} results imported into classroom {classroom.id} by user {teacher_id}"
        )
        return [result for result in stored if (result.student_id, result.subject_id) in keys]
