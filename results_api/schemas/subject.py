"""Subject and subject group schemas."""

from pydantic import Field

from results_api.models.subject import SubjectCategory
from results_api.schemas.common import BaseSchema, TimestampSchema


# ==========================================
# Subjects
# ==========================================

class SubjectCreate(BaseSchema):
    """Subject creation schema."""

    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")
    category: SubjectCategory = SubjectCategory.GENERAL
    description: str | None = None


class SubjectUpdate(SubjectCreate):
    """Subject update schema (full replacement of editable fields)."""


class SubjectResponse(TimestampSchema):
    """Subject response schema."""

    id: int
    name: str
    code: str
    category: SubjectCategory
    description: str | None
    is_active: bool


class SubjectSummary(BaseSchema):
    """Subject as listed inside a subject group."""

    id: int
    name: str
    code: str


class SubjectFilter(BaseSchema):
    """Subject filtering options."""

    search: str | None = None
    category: SubjectCategory | None = None
    is_active: bool | None = None


# ==========================================
# Subject Groups
# ==========================================

class SubjectGroupCreate(BaseSchema):
    """Subject group creation schema."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    academic_session: str | None = Field(None, max_length=20)
    term: str | None = Field(None, max_length=20)
    subject_ids: list[int] = Field(..., min_length=1)


class SubjectGroupUpdate(BaseSchema):
    """Subject group update schema.

    ``subject_ids`` replaces the whole membership when provided.
    """

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    academic_session: str | None = Field(None, max_length=20)
    term: str | None = Field(None, max_length=20)
    subject_ids: list[int] | None = None


class SubjectGroupResponse(TimestampSchema):
    """Subject group with its subjects."""

    id: int
    name: str
    description: str | None
    academic_session: str | None
    term: str | None
    created_by: int | None
    created_by_name: str | None = None
    subjects: list[SubjectSummary] = []
    subject_count: int = 0


class SubjectGroupFilter(BaseSchema):
    """Subject group filtering options."""

    academic_session: str | None = None
    term: str | None = None
    search: str | None = None
