from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy import func, select

from results_api.core.exceptions import (
    ConflictError,
    CSVParseTimeoutError,
    ImportFailedError,
    NotFoundError,
    ValidationError,
)
from results_api.models.audit import AuditAction, AuditLog
from results_api.models.result import BatchStatus, ResultBatch, StudentResult
from results_api.models.subject import Subject
from results_api.schemas.result import ResultRecordImport
from results_api.services.result_import import ResultImportService, ResultRecordService

HEADER = "user_id,email,first_name,last_name,MATH_CA,MATH_EXAM,ENG_CA,ENG_EXAM\n"


def results_by_key(session_factory):
    with session_factory() as session:
        rows = session.execute(select(StudentResult)).scalars().all()
        return {(r.student_id, r.subject_id): r for r in rows}


def load_batch(session_factory, batch_id):
    with session_factory() as session:
        return session.get(ResultBatch, batch_id)


def test_import_grades_scores_and_completes_batch(session_factory, school, batch_id, sheet_rows):
    sheet = (
        HEADER
        + f"{school.ada.id},ada@school.test,Ada,Lovelace,20,25,40,40\n"
        + ",BEN@school.test,Ben,Okafor,40,40,,\n"
    )

    result = ResultImportService(session_factory).import_batch(
        batch_id, sheet_rows(sheet), school.teacher.id, file_url="https://files.school.test/results/csv/a.csv"
    )

    assert (result.success, result.imported, result.failed, result.errors) == (True, 3, 0, [])

    results = results_by_key(session_factory)
    ada_math = results[(school.ada.id, school.math_id)]
    assert ada_math.total_score == Decimal("45")
    assert (ada_math.grade, ada_math.remark) == ("F", "Fail")
    assert results[(school.ada.id, school.eng_id)].grade == "P"
    ben_math = results[(school.ben.id, school.math_id)]
    assert (ben_math.total_score, ben_math.grade, ben_math.remark) == (Decimal("80"), "P", "Pass")
    assert ben_math.teacher_id == school.teacher.id
    assert ben_math.academic_year == "2024/2025" and ben_math.term == "Term 1"

    batch = load_batch(session_factory, batch_id)
    assert batch.status == BatchStatus.COMPLETED
    assert (batch.total_students, batch.total_subjects, batch.total_results, batch.failed_imports) == (2, 2, 3, 0)
    assert batch.error_log == []
    assert batch.processed_at is not None
    assert batch.csv_file_path == "https://files.school.test/results/csv/a.csv"


def test_reimport_reports_the_superseded_sheet(session_factory, school, batch_id, sheet_rows):
    sheet = HEADER + f"{school.ada.id},,Ada,Lovelace,20,25,,\n"
    first_url = "https://files.school.test/results/csv/a.csv"
    second_url = "https://files.school.test/results/csv/b.csv"
    service = ResultImportService(session_factory)

    first = service.import_batch(batch_id, sheet_rows(sheet), school.teacher.id, file_url=first_url)
    result = service.import_batch(batch_id, sheet_rows(sheet), school.teacher.id, file_url=second_url)

    assert first.replaced_file_url is None
    assert result.replaced_file_url == first_url
    assert "replaced_file_url" not in result.model_dump()
    assert load_batch(session_factory, batch_id).csv_file_path == second_url


def test_reimporting_the_same_sheet_is_idempotent(session_factory, school, batch_id, sheet_rows):
    sheet = HEADER + f"{school.ada.id},,Ada,Lovelace,20,25,30,30\n"
    service = ResultImportService(session_factory)

    service.import_batch(batch_id, sheet_rows(sheet), school.teacher.id)
    first = {key: (r.total_score, r.grade) for key, r in results_by_key(session_factory).items()}
    service.import_batch(batch_id, sheet_rows(sheet), school.teacher.id)
    second = {key: (r.total_score, r.grade) for key, r in results_by_key(session_factory).items()}

    assert first == second
    assert len(second) == 2


def test_reimport_overwrites_scores_and_regrades(session_factory, school, batch_id, sheet_rows):
    service = ResultImportService(session_factory)
    service.import_batch(batch_id, sheet_rows(HEADER + f"{school.ada.id},,Ada,Lovelace,20,25,,\n"), school.teacher.id)
    service.import_batch(batch_id, sheet_rows(HEADER + f"{school.ada.id},,Ada,Lovelace,30,40,,\n"), school.admin.id)

    results = results_by_key(session_factory)
    assert len(results) == 1
    ada_math = results[(school.ada.id, school.math_id)]
    assert (ada_math.ca_score, ada_math.exam_score, ada_math.total_score) == (
        Decimal("30"), Decimal("40"), Decimal("70"),
    )
    assert (ada_math.grade, ada_math.teacher_id) == ("P", school.admin.id)


def test_bad_rows_are_reported_while_good_rows_import(session_factory, school, batch_id, sheet_rows):
    sheet = (
        HEADER
        + f"{school.ada.id},,Ada,Lovelace,abc,25,30,40\n"  # line 2: MATH malformed, ENG fine
        + f"{school.cyril.id},,Cyril,Nwosu,10,10,,\n"  # line 3: other classroom
        + "99999,,Ghost,Student,10,10,,\n"  # line 4: unknown id
        + ",nobody@school.test,No,Body,10,10,,\n"  # line 5: unknown email
        + ",,No,Identity,10,10,,\n"  # line 6: no identity
        + f"{school.ben.id},,Ben,Okafor,35,30,,\n"  # line 7: fine
    )

    result = ResultImportService(session_factory).import_batch(batch_id, sheet_rows(sheet), school.teacher.id)

    assert result.imported == 2
    # Rows rejected while parsing are errors but not failed imports
    assert result.failed == 3
    assert sorted((e.line, e.error) for e in result.errors) == [
        (2, "Invalid CA score for MATH: abc"),
        (3, "Student not enrolled in this classroom"),
        (4, "Student not found"),
        (5, "Student not found"),
        (6, "Missing user_id or email"),
    ]

    batch = load_batch(session_factory, batch_id)
    assert batch.status == BatchStatus.COMPLETED
    assert batch.failed_imports == 3
    assert len(batch.error_log) == 5
    assert {entry["error"] for entry in batch.error_log} >= {"Student not found", "Missing user_id or email"}
    assert set(results_by_key(session_factory)) == {
        (school.ada.id, school.eng_id),
        (school.ben.id, school.math_id),
    }


def test_inactive_subject_is_not_found(session_factory, school, batch_id, sheet_rows):
    with session_factory() as session:
        session.get(Subject, school.eng_id).is_active = False
        session.commit()

    result = ResultImportService(session_factory).import_batch(
        batch_id, sheet_rows(HEADER + f"{school.ada.id},,Ada,Lovelace,20,20,20,20\n"), school.teacher.id
    )

    assert result.imported == 1
    assert [e.error for e in result.errors] == ["Subject not found: ENG"]


def test_parse_timeout_marks_batch_failed(session_factory, school, batch_id, sheet_rows):
    ticks = count(start=0, step=100)
    service = ResultImportService(session_factory, timeout_seconds=1, clock=lambda: next(ticks))

    with pytest.raises(CSVParseTimeoutError):
        service.import_batch(batch_id, sheet_rows(HEADER + f"{school.ada.id},,A,L,1,1,,\n"), school.teacher.id)

    batch = load_batch(session_factory, batch_id)
    assert batch.status == BatchStatus.FAILED
    assert batch.error_log == [{"error": "CSV parsing timeout after 1 seconds"}]
    assert results_by_key(session_factory) == {}


def test_unexpected_error_rolls_back_and_is_wrapped(session_factory, school, batch_id):
    def exploding_rows():
        yield {"user_id": str(school.ada.id), "MATH_CA": "10", "MATH_EXAM": "10"}
        raise RuntimeError("connection reset")

    with pytest.raises(ImportFailedError) as exc_info:
        ResultImportService(session_factory).import_batch(batch_id, exploding_rows(), school.teacher.id)

    assert exc_info.value.message == "Failed to import results: connection reset"
    batch = load_batch(session_factory, batch_id)
    assert batch.status == BatchStatus.FAILED
    assert batch.error_log == [{"error": "connection reset"}]

    with session_factory() as session:
        actions = session.execute(
            select(AuditLog.action).where(AuditLog.resource_id == str(batch_id))
        ).scalars().all()
    assert AuditAction.UPLOAD_FAILED in actions


def test_failed_batch_can_be_reimported(session_factory, school, batch_id, sheet_rows):
    def exploding_rows():
        raise RuntimeError("disk full")
        yield

    with pytest.raises(ImportFailedError):
        ResultImportService(session_factory).import_batch(batch_id, exploding_rows(), school.teacher.id)

    result = ResultImportService(session_factory).import_batch(
        batch_id, sheet_rows(HEADER + f"{school.ada.id},,A,L,30,30,,\n"), school.teacher.id
    )
    assert result.imported == 1
    assert load_batch(session_factory, batch_id).status == BatchStatus.COMPLETED


@pytest.mark.parametrize("status", [BatchStatus.PROCESSING, BatchStatus.PUBLISHED])
def test_import_is_refused_while_processing_or_published(session_factory, school, batch_id, sheet_rows, status):
    with session_factory() as session:
        session.get(ResultBatch, batch_id).status = status
        session.commit()

    with pytest.raises(ConflictError):
        ResultImportService(session_factory).import_batch(
            batch_id, sheet_rows(HEADER + f"{school.ada.id},,A,L,1,1,,\n"), school.teacher.id
        )

    assert load_batch(session_factory, batch_id).status == status


def test_empty_subject_group_is_rejected_before_processing(session_factory, school, make_batch, sheet_rows):
    batch_id = make_batch(subject_group_id=school.empty_group_id)

    with pytest.raises(ValidationError):
        ResultImportService(session_factory).import_batch(
            batch_id, sheet_rows(HEADER + f"{school.ada.id},,A,L,1,1,,\n"), school.teacher.id
        )

    assert load_batch(session_factory, batch_id).status == BatchStatus.DRAFT


def test_missing_batch_is_not_found(session_factory, school, sheet_rows):
    with pytest.raises(NotFoundError):
        ResultImportService(session_factory).import_batch(404, sheet_rows(HEADER), school.teacher.id)


def test_natural_key_allows_one_row_per_scope(session_factory, school, make_batch, sheet_rows):
    first_term = make_batch(term="Term 1")
    second_term = make_batch(term="Term 2")
    sheet = HEADER + f"{school.ada.id},,Ada,Lovelace,20,20,,\n"
    service = ResultImportService(session_factory)

    service.import_batch(first_term, sheet_rows(sheet), school.teacher.id)
    service.import_batch(second_term, sheet_rows(sheet), school.teacher.id)
    service.import_batch(second_term, sheet_rows(sheet), school.teacher.id)

    with session_factory() as session:
        per_term = dict(
            session.execute(
                select(StudentResult.term, func.count()).group_by(StudentResult.term)
            ).all()
        )
    assert per_term == {"Term 1": 1, "Term 2": 1}


def record_import(school, classroom_id=None, **record):
    data = {"student_id": school.ada.id, "subject_id": school.math_id, "ca_score": "20", "exam_score": "25"}
    data.update(record)
    return ResultRecordImport(
        classroom_id=classroom_id or school.classroom_id,
        grading_scale_id=school.scale_id,
        results=[data],
    )


def test_record_import_grades_into_the_classroom_term(db, school):
    stored = ResultRecordService(db).import_records(record_import(school), school.teacher.id)
    db.commit()

    (result,) = stored
    assert (result.academic_year, result.term) == ("2024/2025", "Term 1")
    assert (result.total_score, result.grade, result.remark) == (Decimal("45"), "F", "Fail")
    assert result.teacher_id == school.teacher.id


def test_record_import_overwrites_existing_scores(session_factory, school):
    with session_factory() as session:
        ResultRecordService(session).import_records(record_import(school), school.teacher.id)
        session.commit()
    with session_factory() as session:
        (result,) = ResultRecordService(session).import_records(
            record_import(school, ca_score="30", exam_score="40"), school.admin.id
        )
        session.commit()
        assert (result.total_score, result.grade, result.teacher_id) == (Decimal("70"), "P", school.admin.id)

    assert len(results_by_key(session_factory)) == 1


def test_record_import_rejects_unknown_students_and_subjects(db, school):
    request = ResultRecordImport(
        classroom_id=school.classroom_id,
        grading_scale_id=school.scale_id,
        results=[
            {"student_id": school.ada.id, "subject_id": school.math_id, "ca_score": 1, "exam_score": 1},
            {"student_id": 9999, "subject_id": 8888, "ca_score": 1, "exam_score": 1},
        ],
    )

    with pytest.raises(ValidationError) as exc_info:
        ResultRecordService(db).import_records(request, school.teacher.id)

    assert exc_info.value.details == {"missing_student_ids": [9999], "missing_subject_ids": [8888]}
    assert db.scalar(select(func.count()).select_from(StudentResult)) == 0


def test_record_import_needs_a_classroom_term(db, school):
    with pytest.raises(ValidationError) as exc_info:
        ResultRecordService(db).import_records(
            record_import(school, classroom_id=school.other_classroom_id), school.teacher.id
        )
    assert exc_info.value.message == "Classroom has no current academic year and term"


def test_record_import_unknown_classroom(db, school):
    with pytest.raises(NotFoundError):
        ResultRecordService(db).import_records(record_import(school, classroom_id=999), school.teacher.id)
