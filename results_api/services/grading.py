"""Grade resolution against a configurable grading scale."""

import json
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

FALLBACK_GRADE = "F"
FALLBACK_REMARK = "Fail"


class GradeBand(BaseModel):
    """One ``min <= score <= max`` range of a grading scale."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    min: Decimal
    max: Decimal
    grade: str = Field(..., min_length=1, max_length=5)
    remark: str = ""

    @model_validator(mode="after")
    def check_bounds(self) -> "GradeBand":
        if self.min > self.max:
            raise ValueError(f"Band {self.grade}: min ({self.min}) exceeds max ({self.max})")
        return self

    def contains(self, score: Decimal) -> bool:
        return self.min <= score <= self.max

    def to_config(self) -> dict[str, Any]:
        """JSON-ready form with numeric bounds, as stored in ``grade_config``."""
        return {
            "min": _number(self.min),
            "max": _number(self.max),
            "grade": self.grade,
            "remark": self.remark,
        }


def _number(value: Decimal) -> int | float:
    return int(value) if value == value.to_integral_value() else float(value)


_bands_adapter = TypeAdapter(list[GradeBand])


def decode_grade_config(config: Any) -> list[GradeBand]:
    """Decode a stored grade configuration into bands.

    Accepts the parsed list (JSON/JSONB column) or its JSON-encoded string
    form. Order is preserved; it decides which band wins on overlap.
    """
    if config is None:
        return []
    if isinstance(config, (str, bytes)):
        config = json.loads(config)
    return _bands_adapter.validate_python(config)


def resolve_grade(total_score: Decimal | float | int, scale: Any) -> tuple[str, str]:
    """Return ``(grade, remark)`` for the first band containing the score.

    ``scale`` is normally the decoded bands of ``GradingScale.bands``; a raw
    list of dicts or a JSON string is decoded first. Scores outside every
    band resolve to ``("F", "Fail")``.
    """
    if isinstance(scale, (str, bytes)) or not all(isinstance(b, GradeBand) for b in scale):
        scale = decode_grade_config(scale)
    score = Decimal(str(total_score))
    for band in scale:
        if band.contains(score):
            return band.grade, band.remark
    return FALLBACK_GRADE, FALLBACK_REMARK
