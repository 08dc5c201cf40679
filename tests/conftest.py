"""Shared fixtures: a throwaway SQLite database, seed data and fake collaborators."""

import io
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event

import results_api.models  # noqa: F401  (registers every table)
from results_api.core.database import Base, create_session_factory
from results_api.core.storage import StoredFile, build_object_key
from results_api.models.classroom import Classroom, ClassroomStudent
from results_api.models.grading import GradingScale
from results_api.models.subject import Subject, SubjectGroup, SubjectGroupSubject
from results_api.models.user import User, UserRole
from results_api.schemas.result import BatchCreate
from results_api.services.result_batch import ResultBatchService
from results_api.services.score_sheet import iter_csv_rows

PASS_FAIL_SCALE = [
    {"min": 0, "max": 49, "grade": "F", "remark": "Fail"},
    {"min": 50, "max": 100, "grade": "P", "remark": "Pass"},
]


class FakeStorage:
    """In-memory object storage; keys listed in ``failing_keys`` refuse deletion."""

    public_url = "https://files.school.test"

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.failing_keys: set[str] = set()

    def upload_file(self, fileobj, filename, content_type, folder, metadata=None):
        key = build_object_key(folder, filename)
        self.objects[key] = fileobj.read()
        return StoredFile(file_url=f"{self.public_url}/{key}", file_key=key)

    def delete_file(self, file_key):
        if file_key in self.failing_keys:
            raise ConnectionError(f"storage unavailable for {file_key}")
        self.objects.pop(file_key, None)
        self.deleted.append(file_key)


class FakeScheduler:
    """Records jobs instead of running them."""

    def __init__(self):
        self.jobs: list[dict] = []

    def add_job(self, func, trigger=None, args=None, id=None, name=None, **kwargs):
        self.jobs.append({"func": func, "trigger": trigger, "args": args or [], "id": id, "name": name})


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'results.db'}",
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def school(session_factory):
    """A classroom with two enrolled students, MATH/ENG subjects and a pass/fail scale."""
    with session_factory() as session:
        admin = User(first_name="Grace", last_name="Adeyemi", email="admin@school.test", role=UserRole.ADMIN)
        teacher = User(first_name="Tunde", last_name="Bello", email="teacher@school.test", role=UserRole.TEACHER)
        ada = User(first_name="Ada", last_name="Lovelace", email="ada@school.test", role=UserRole.STUDENT)
        ben = User(first_name="Ben", last_name="Okafor", email="ben@school.test", role=UserRole.STUDENT)
        cyril = User(first_name="Cyril", last_name="Nwosu", email="cyril@school.test", role=UserRole.STUDENT)
        parent = User(first_name="Ngozi", last_name="Okafor", email="parent@school.test", role=UserRole.PARENT)
        session.add_all([admin, teacher, ada, ben, cyril, parent])

        classroom = Classroom(
            name="JSS 1A",
            level="JSS 1",
            section="A",
            academic_year="2024/2025",
            academic_term="Term 1",
        )
        other_classroom = Classroom(name="JSS 1B", level="JSS 1", section="B")
        session.add_all([classroom, other_classroom])
        session.flush()

        session.add_all([
            ClassroomStudent(classroom_id=classroom.id, student_id=ada.id, enrollment_number="ENR-001", roll_number="1"),
            ClassroomStudent(classroom_id=classroom.id, student_id=ben.id, enrollment_number="ENR-002", roll_number="2"),
            ClassroomStudent(classroom_id=other_classroom.id, student_id=cyril.id),
        ])

        math = Subject(name="Mathematics", code="MATH")
        eng = Subject(name="Use of English", code="ENG")
        session.add_all([math, eng])
        session.flush()

        group = SubjectGroup(name="JSS Core", academic_session="2024/2025", term="Term 1", created_by=admin.id)
        empty_group = SubjectGroup(name="Unassigned", created_by=admin.id)
        session.add_all([group, empty_group])
        session.flush()
        session.add_all([
            SubjectGroupSubject(subject_group_id=group.id, subject_id=math.id),
            SubjectGroupSubject(subject_group_id=group.id, subject_id=eng.id),
        ])

        scale = GradingScale(name="Pass/Fail", grade_config=PASS_FAIL_SCALE, is_default=True, created_by=admin.id)
        session.add(scale)
        session.commit()

        return SimpleNamespace(
            admin=admin,
            teacher=teacher,
            ada=ada,
            ben=ben,
            cyril=cyril,
            parent=parent,
            classroom_id=classroom.id,
            other_classroom_id=other_classroom.id,
            math_id=math.id,
            eng_id=eng.id,
            group_id=group.id,
            empty_group_id=empty_group.id,
            scale_id=scale.id,
        )


@pytest.fixture
def sheet_rows():
    """Score sheet rows from CSV text, streamed the way the upload endpoint reads them."""

    def build(text: str):
        return iter_csv_rows(io.BytesIO(text.encode("utf-8")))

    return build


@pytest.fixture
def make_batch(session_factory, school):
    """Create and commit a draft batch; returns its id."""

    def build(classroom_id=None, term="Term 1", subject_group_id=None):
        with session_factory() as session:
            batch = ResultBatchService(session).create_batch(
                BatchCreate(
                    batch_name=f"{term} Results",
                    classroom_id=classroom_id or school.classroom_id,
                    academic_year="2024/2025",
                    term=term,
                    grading_scale_id=school.scale_id,
                    subject_group_id=subject_group_id or school.group_id,
                ),
                school.teacher.id,
            )
            session.commit()
            return batch.id

    return build


@pytest.fixture
def batch_id(make_batch):
    return make_batch()
