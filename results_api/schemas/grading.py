"""Grading scale schemas."""

from pydantic import Field

from results_api.schemas.common import BaseSchema, TimestampSchema
from results_api.services.grading import GradeBand


class GradingScaleCreate(BaseSchema):
    """Grading scale creation schema."""

    name: str = Field(..., min_length=1, max_length=100)
    grade_config: list[GradeBand] = Field(..., min_length=1)
    is_default: bool = False


class GradingScaleUpdate(GradingScaleCreate):
    """Grading scale update schema."""


class GradingScaleResponse(TimestampSchema):
    """Grading scale response schema."""

    id: int
    name: str
    grade_config: list[GradeBand]
    is_default: bool
    created_by: int | None
    creator_username: str | None = None
