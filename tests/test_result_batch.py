import csv
import io

import pytest
from openpyxl import load_workbook
from sqlalchemy import select

from results_api.core.config import settings
from results_api.core.exceptions import ConflictError, NotFoundError, ValidationError
from results_api.models.audit import AuditAction, AuditLog
from results_api.models.result import BatchStatus, ResultBatch, StudentResult
from results_api.schemas.result import BatchCreate, BatchFilter, BatchSignatureUpdate, BatchUpdate
from results_api.services.audit import AuditService
from results_api.services.result_batch import ResultBatchService, format_batch_code
from results_api.services.result_import import ResultImportService

HEADER = "user_id,email,first_name,last_name,MATH_CA,MATH_EXAM,ENG_CA,ENG_EXAM\n"


def batch_request(school, **overrides):
    data = {
        "batch_name": "First Term Results",
        "classroom_id": school.classroom_id,
        "academic_year": "2024/2025",
        "term": "Term 1",
        "grading_scale_id": school.scale_id,
        "subject_group_id": school.group_id,
    }
    data.update(overrides)
    return BatchCreate(**data)


def import_scores(session_factory, batch_id, school, sheet_rows):
    sheet = (
        HEADER
        + f"{school.ada.id},,Ada,Lovelace,20,25,30,30\n"
        + f"{school.ben.id},,Ben,Okafor,40,40,,\n"
    )
    return ResultImportService(session_factory).import_batch(batch_id, sheet_rows(sheet), school.teacher.id)


@pytest.mark.parametrize(
    "year, term, sequence, expected",
    [
        ("2024/2025", "Term 2", 7, "RB-2024-T2-007"),
        ("2024", "First Term", 1, "RB-2024-T1-001"),
        ("2023-2024", "3", 12, "RB-2023-T3-012"),
    ],
)
def test_format_batch_code(year, term, sequence, expected):
    assert format_batch_code("RB", year, term, sequence) == expected


def test_create_batch_starts_as_draft_with_roster_snapshot(db, school):
    service = ResultBatchService(db)
    batch = service.create_batch(batch_request(school, teacher_name="Mr. Bello"), school.teacher.id)
    db.commit()

    assert batch.status == BatchStatus.DRAFT
    assert batch.batch_code == "RB-2024-T1-001"
    assert batch.total_students == 2
    assert batch.teacher_name == "Mr. Bello"
    assert batch.created_by == school.teacher.id

    response = service.to_response(batch)
    assert response.classroom_name == "JSS 1A"
    assert response.subject_group_name == "JSS Core"
    assert response.grading_scale_name == "Pass/Fail"
    assert (response.total_students, response.total_subjects, response.total_results) == (2, 2, 0)
    assert [log.action for log in AuditService(db).list_for_resource("result_batch", batch.id)] == [
        AuditAction.BATCH_CREATED
    ]


def test_sequential_creations_in_a_scope_get_increasing_codes(db, school):
    service = ResultBatchService(db)
    codes = [service.create_batch(batch_request(school), school.teacher.id).batch_code for _ in range(3)]
    assert codes == ["RB-2024-T1-001", "RB-2024-T1-002", "RB-2024-T1-003"]


def test_code_collision_across_classrooms_moves_to_next_sequence(db, school):
    service = ResultBatchService(db)
    first = service.create_batch(batch_request(school), school.teacher.id)
    # Same year and term in another classroom formats to the same first code
    second = service.create_batch(
        batch_request(school, classroom_id=school.other_classroom_id), school.teacher.id
    )
    db.commit()

    assert first.batch_code == "RB-2024-T1-001"
    assert second.batch_code == "RB-2024-T1-002"
    assert db.scalar(select(ResultBatch).where(ResultBatch.id == first.id)) is first


def test_code_allocation_gives_up_after_max_attempts(db, school, monkeypatch):
    monkeypatch.setattr(settings, "BATCH_CODE_MAX_ATTEMPTS", 1)
    service = ResultBatchService(db)
    service.create_batch(batch_request(school), school.teacher.id)

    with pytest.raises(ConflictError):
        service.create_batch(batch_request(school, classroom_id=school.other_classroom_id), school.teacher.id)


@pytest.mark.parametrize(
    "field, missing_id, resource",
    [
        ("classroom_id", 999, "Classroom"),
        ("grading_scale_id", 999, "Grading scale"),
        ("subject_group_id", 999, "Subject group"),
    ],
)
def test_create_batch_validates_references(db, school, field, missing_id, resource):
    with pytest.raises(NotFoundError) as exc_info:
        ResultBatchService(db).create_batch(batch_request(school, **{field: missing_id}), school.teacher.id)
    assert exc_info.value.message == f"{resource} not found"


def test_update_batch_replaces_descriptive_fields(db, school, batch_id):
    service = ResultBatchService(db)
    batch = service.update_batch(
        batch_id,
        BatchUpdate(
            batch_name="Renamed",
            classroom_id=school.classroom_id,
            academic_year="2024/2025",
            term="Term 2",
            grading_scale_id=school.scale_id,
            subject_group_id=school.group_id,
        ),
        school.admin.id,
    )
    assert (batch.batch_name, batch.term, batch.updated_by) == ("Renamed", "Term 2", school.admin.id)
    assert batch.batch_code == "RB-2024-T1-001"


def test_list_batches_filters_and_pages(db, school, make_batch):
    make_batch(term="Term 1")
    make_batch(term="Term 2")
    make_batch(term="Term 2")
    service = ResultBatchService(db)

    items, total = service.list_batches(BatchFilter(term="Term 2"), page=1, page_size=1)
    assert total == 2
    assert [b.batch_code for b in items] == ["RB-2024-T2-002"]

    items, total = service.list_batches(BatchFilter(status=BatchStatus.PUBLISHED))
    assert (items, total) == ([], 0)


def test_signature_update_requires_a_field(db, school, batch_id):
    with pytest.raises(ValidationError) as exc_info:
        ResultBatchService(db).update_signatures(batch_id, BatchSignatureUpdate(), school.teacher.id)
    assert exc_info.value.message == "No fields to update"


def test_signature_update_is_partial(db, school, batch_id):
    service = ResultBatchService(db)
    service.update_signatures(batch_id, BatchSignatureUpdate(principal_name="Mrs. Eze"), school.teacher.id)
    batch = service.update_signatures(
        batch_id, BatchSignatureUpdate(teacher_name="Mr. Bello"), school.teacher.id
    )
    assert (batch.principal_name, batch.teacher_name) == ("Mrs. Eze", "Mr. Bello")


def test_upload_signature_stores_file_and_returns_replaced_key(db, school, batch_id, storage):
    service = ResultBatchService(db, storage)

    batch, first_url, replaced = service.upload_signature(
        batch_id, "teacher", io.BytesIO(b"png-1"), "sig.png", "image/png", school.teacher.id
    )
    assert replaced is None
    assert batch.teacher_signature_url == first_url
    assert first_url.startswith(f"{storage.public_url}/{settings.SIGNATURE_FOLDER}/")

    _, second_url, replaced = service.upload_signature(
        batch_id, "teacher", io.BytesIO(b"png-2"), "sig.png", "image/png", school.teacher.id
    )
    assert replaced == first_url[len(storage.public_url) + 1:]
    assert second_url != first_url


def test_upload_signature_rejects_unknown_type(db, school, batch_id, storage):
    with pytest.raises(ValidationError):
        ResultBatchService(db, storage).upload_signature(
            batch_id, "bursar", io.BytesIO(b"png"), "sig.png", "image/png", school.teacher.id
        )
    assert storage.objects == {}


def test_publish_requires_completed_batch(session_factory, school, batch_id, sheet_rows):
    with session_factory() as session:
        with pytest.raises(ConflictError):
            ResultBatchService(session).publish_batch(batch_id, school.teacher.id)

    import_scores(session_factory, batch_id, school, sheet_rows)

    with session_factory() as session:
        batch = ResultBatchService(session).publish_batch(batch_id, school.teacher.id)
        session.commit()
        assert batch.status == BatchStatus.PUBLISHED
        assert batch.published_at is not None

        with pytest.raises(ConflictError):
            ResultBatchService(session).publish_batch(batch_id, school.teacher.id)


def test_override_status_allows_any_transition(db, school, batch_id):
    service = ResultBatchService(db)
    service.override_status(batch_id, BatchStatus.PUBLISHED, school.admin.id)
    batch = service.override_status(batch_id, BatchStatus.DRAFT, school.admin.id)

    assert batch.status == BatchStatus.DRAFT
    overrides = [
        log.extra_data
        for log in AuditService(db).list_for_resource("result_batch", batch_id)
        if log.action == AuditAction.BATCH_STATUS_OVERRIDDEN
    ]
    assert overrides == [
        {"from": "draft", "to": "published"},
        {"from": "published", "to": "draft"},
    ]


def test_delete_removes_every_result_in_scope(session_factory, school, make_batch, sheet_rows, storage):
    first = make_batch()
    second = make_batch()
    other_term = make_batch(term="Term 2")
    # Results written through the second batch share the first batch's scope
    import_scores(session_factory, second, school, sheet_rows)
    import_scores(session_factory, other_term, school, sheet_rows)

    with session_factory() as session:
        keys = ResultBatchService(session, storage).delete_batch(first, school.admin.id)

    assert keys == []
    with session_factory() as session:
        assert session.get(ResultBatch, first) is None
        remaining = session.execute(select(StudentResult.term)).scalars().all()
        assert set(remaining) == {"Term 2"}
        assert len(remaining) == 3
        assert session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.BATCH_DELETED)
        ).scalar_one().extra_data == {"batch_code": "RB-2024-T1-001", "results_deleted": 3}


def test_delete_returns_keys_of_owned_artifacts_only(session_factory, school, batch_id, storage):
    with session_factory() as session:
        service = ResultBatchService(session, storage)
        service.update_signatures(
            batch_id,
            BatchSignatureUpdate(
                teacher_signature_url=f"{storage.public_url}/results/signatures/t.png",
                principal_signature_url="https://elsewhere.test/p.png",
            ),
            school.teacher.id,
        )
        session.get(ResultBatch, batch_id).csv_file_path = f"{storage.public_url}/results/csv/s.csv"
        session.commit()

        keys = service.delete_batch(batch_id, school.admin.id)

    assert sorted(keys) == ["results/csv/s.csv", "results/signatures/t.png"]


def test_csv_template_lists_subject_columns_and_enrolled_students(db, school, batch_id):
    filename, text = ResultBatchService(db).generate_csv_template(batch_id)

    assert filename == "result-template-RB-2024-T1-001.csv"
    lines = text.splitlines()
    assert lines[0] == "user_id,email,first_name,last_name,MATH_CA,MATH_EXAM,ENG_CA,ENG_EXAM"
    assert len(lines) == 3
    rows = list(csv.reader(io.StringIO(text)))[1:]
    assert [row[:4] for row in rows] == [
        [str(school.ada.id), "ada@school.test", "Ada", "Lovelace"],
        [str(school.ben.id), "ben@school.test", "Ben", "Okafor"],
    ]
    assert all(cell == "" for row in rows for cell in row[4:])


def test_xlsx_template_matches_csv_columns(db, school, batch_id):
    filename, content = ResultBatchService(db).generate_xlsx_template(batch_id)

    assert filename.endswith(".xlsx")
    sheet = load_workbook(io.BytesIO(content)).active
    rows = list(sheet.iter_rows(values_only=True))
    assert list(rows[0]) == ["user_id", "email", "first_name", "last_name", "MATH_CA", "MATH_EXAM", "ENG_CA", "ENG_EXAM"]
    assert [row[1] for row in rows[1:]] == ["ada@school.test", "ben@school.test"]


def test_template_needs_subjects(db, school, make_batch):
    batch_id = make_batch(subject_group_id=school.empty_group_id)
    with pytest.raises(ValidationError) as exc_info:
        ResultBatchService(db).generate_csv_template(batch_id)
    assert exc_info.value.message == "Subject group has no subjects assigned"
