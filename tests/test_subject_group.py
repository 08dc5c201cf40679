import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from results_api.core.exceptions import ConflictError, NotFoundError, ValidationError
from results_api.models.grading import GradingScale
from results_api.models.subject import SubjectGroup, SubjectGroupSubject
from results_api.schemas.grading import GradingScaleCreate
from results_api.schemas.subject import (
    SubjectCreate,
    SubjectGroupCreate,
    SubjectGroupFilter,
    SubjectGroupUpdate,
)
from results_api.services.grading_scale import GradingScaleService
from results_api.services.result_import import ResultImportService
from results_api.services.subject import SubjectService
from results_api.services.subject_group import SubjectGroupService

LETTER_SCALE = [
    {"min": 0, "max": 59, "grade": "D", "remark": "Poor"},
    {"min": 60, "max": 100, "grade": "A", "remark": "Good"},
]


def member_ids(db, group_id):
    return set(
        db.execute(
            select(SubjectGroupSubject.subject_id).where(SubjectGroupSubject.subject_group_id == group_id)
        ).scalars()
    )


def test_create_group_with_subjects(db, school):
    service = SubjectGroupService(db)
    group = service.create_group(
        SubjectGroupCreate(name="Sciences", subject_ids=[school.math_id, school.math_id]),
        school.admin.id,
    )
    db.commit()

    response = service.to_response(group)
    assert response.subject_count == 1
    assert [s.code for s in response.subjects] == ["MATH"]
    assert response.created_by_name == "Grace Adeyemi"


def test_group_needs_at_least_one_subject():
    with pytest.raises(PydanticValidationError):
        SubjectGroupCreate(name="Nothing", subject_ids=[])


def test_unknown_subject_ids_are_reported(db, school):
    with pytest.raises(ValidationError) as exc_info:
        SubjectGroupService(db).create_group(
            SubjectGroupCreate(name="Broken", subject_ids=[school.math_id, 404, 405]),
            school.admin.id,
        )
    assert exc_info.value.message == "One or more subjects not found"
    assert exc_info.value.details == {"missing_subject_ids": [404, 405]}


def test_update_replaces_membership(db, school):
    service = SubjectGroupService(db)
    group = service.update_group(
        school.group_id,
        SubjectGroupUpdate(name="JSS Core (revised)", subject_ids=[school.eng_id]),
        school.admin.id,
    )
    db.commit()

    assert group.name == "JSS Core (revised)"
    assert [s.code for s in group.subjects] == ["ENG"]
    assert member_ids(db, school.group_id) == {school.eng_id}


def test_update_without_subject_ids_keeps_membership(db, school):
    SubjectGroupService(db).update_group(
        school.group_id, SubjectGroupUpdate(name="Renamed"), school.admin.id
    )
    assert member_ids(db, school.group_id) == {school.math_id, school.eng_id}


def test_group_in_use_cannot_be_deleted(db, school, batch_id):
    with pytest.raises(ConflictError) as exc_info:
        SubjectGroupService(db).delete_group(school.group_id, school.admin.id)

    assert exc_info.value.message == "Cannot delete subject group that is being used by result batches"
    assert exc_info.value.details == {"batch_count": 1}
    assert db.get(SubjectGroup, school.group_id) is not None
    assert member_ids(db, school.group_id) == {school.math_id, school.eng_id}


def test_unused_group_is_deleted_with_its_membership(db, school):
    service = SubjectGroupService(db)
    service.delete_group(school.group_id, school.admin.id)
    db.commit()

    assert db.get(SubjectGroup, school.group_id) is None
    assert member_ids(db, school.group_id) == set()
    with pytest.raises(NotFoundError):
        service.get_group(school.group_id)


def test_list_groups_filters_by_session_and_search(db, school):
    service = SubjectGroupService(db)
    groups, total = service.list_groups(SubjectGroupFilter(academic_session="2024/2025"))
    assert (total, [g.name for g in groups]) == (1, ["JSS Core"])

    groups, total = service.list_groups(SubjectGroupFilter(search="unassig"))
    assert [g.name for g in groups] == ["Unassigned"]


def test_subject_codes_are_unique_ignoring_case(db, school):
    with pytest.raises(ConflictError):
        SubjectService(db).create_subject(SubjectCreate(name="Maths again", code="math"))


def test_subject_with_results_cannot_be_deleted(session_factory, school, batch_id, sheet_rows):
    sheet = "user_id,MATH_CA,MATH_EXAM\n" + f"{school.ada.id},10,10\n"
    ResultImportService(session_factory).import_batch(batch_id, sheet_rows(sheet), school.teacher.id)

    with session_factory() as session:
        with pytest.raises(ConflictError):
            SubjectService(session).delete_subject(school.math_id)


def test_toggle_default_leaves_a_single_default(db, school):
    service = GradingScaleService(db)
    other = service.create_scale(
        GradingScaleCreate(name="Letters", grade_config=LETTER_SCALE), school.admin.id
    )
    service.toggle_default(other.id)
    db.commit()

    defaults = db.execute(select(GradingScale.name).where(GradingScale.is_default.is_(True))).scalars().all()
    assert defaults == ["Letters"]


def test_creating_a_default_scale_clears_the_previous_default(db, school):
    service = GradingScaleService(db)
    service.create_scale(
        GradingScaleCreate(name="New default", grade_config=LETTER_SCALE, is_default=True),
        school.admin.id,
    )
    db.commit()

    assert db.get(GradingScale, school.scale_id).is_default is False
    scales, total = service.list_scales()
    assert total == 2
    assert scales[0].name == "New default"


def test_scale_in_use_cannot_be_deleted(db, school, batch_id):
    with pytest.raises(ConflictError):
        GradingScaleService(db).delete_scale(school.scale_id)
    assert db.get(GradingScale, school.scale_id) is not None


def test_scale_response_exposes_typed_bands(db, school):
    service = GradingScaleService(db)
    response = service.to_response(service.get_scale(school.scale_id))
    assert [band.grade for band in response.grade_config] == ["F", "P"]
