import json
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from results_api.services.grading import GradeBand, decode_grade_config, resolve_grade

SCALE = [
    {"min": 0, "max": 39.99, "grade": "F", "remark": "Fail"},
    {"min": 40, "max": 69.99, "grade": "C", "remark": "Credit"},
    {"min": 70, "max": 100, "grade": "A", "remark": "Excellent"},
]


@pytest.mark.parametrize(
    "score, expected",
    [
        (0, ("F", "Fail")),
        (39.99, ("F", "Fail")),
        (40, ("C", "Credit")),
        (Decimal("69.99"), ("C", "Credit")),
        (70, ("A", "Excellent")),
        (100, ("A", "Excellent")),
    ],
)
def test_resolve_grade_picks_containing_band(score, expected):
    assert resolve_grade(score, SCALE) == expected


def test_scores_outside_every_band_fall_back_to_fail():
    assert resolve_grade(150, SCALE) == ("F", "Fail")
    assert resolve_grade(-1, SCALE) == ("F", "Fail")
    # Gap between 39.99 and 40
    assert resolve_grade(Decimal("39.995"), SCALE) == ("F", "Fail")


def test_pass_fail_scale_scenario():
    scale = [
        {"min": 0, "max": 49, "grade": "F", "remark": "Fail"},
        {"min": 50, "max": 100, "grade": "P", "remark": "Pass"},
    ]
    assert resolve_grade(20 + 25, scale) == ("F", "Fail")
    assert resolve_grade(40 + 40, scale) == ("P", "Pass")


def test_first_matching_band_wins_on_overlap():
    overlapping = [
        {"min": 50, "max": 100, "grade": "B", "remark": "Good"},
        {"min": 80, "max": 100, "grade": "A", "remark": "Excellent"},
    ]
    assert resolve_grade(90, overlapping) == ("B", "Good")


def test_json_string_and_decoded_bands_resolve_alike():
    bands = decode_grade_config(SCALE)
    assert resolve_grade(55, json.dumps(SCALE)) == resolve_grade(55, bands) == ("C", "Credit")


def test_decode_grade_config_preserves_order_and_handles_none():
    bands = decode_grade_config(json.dumps(SCALE))
    assert [b.grade for b in bands] == ["F", "C", "A"]
    assert bands[1].min == Decimal("40")
    assert decode_grade_config(None) == []


def test_band_rejects_inverted_bounds():
    with pytest.raises(PydanticValidationError):
        GradeBand(min=80, max=70, grade="A")


def test_band_to_config_keeps_numbers():
    band = GradeBand(min=Decimal("40"), max=Decimal("69.5"), grade="C", remark="Credit")
    assert band.to_config() == {"min": 40, "max": 69.5, "grade": "C", "remark": "Credit"}
