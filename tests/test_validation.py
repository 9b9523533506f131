from datetime import date
from decimal import Decimal

import pytest

from gradebook.domain.schemas import (
    BatchEntryRow,
    ComponentInput,
    DeliberationParamsInput,
    EntryPatch,
    EvaluationEntryInput,
    TeachingUnitInput,
    parse_input,
    validate_input,
)
from gradebook.infrastructure.config import reset_settings
from gradebook.infrastructure.exceptions import MultipleValidationError, ValidationError


class TestTeachingUnitInput:
    def test_valid_unit(self):
        result = validate_input(
            TeachingUnitInput,
            {
                "code": " inf201 ",
                "name": "Algorithms",
                "academic_level": "L2",
                "program": "GL",
                "credits": 6,
                "academic_year": "2023-2024",
            },
        )
        assert result.success
        assert result.data["code"] == "INF201"

    @pytest.mark.parametrize("year", ["2023", "2023-2023", "2023/2024", "23-24"])
    def test_academic_year_format(self, year):
        result = validate_input(
            TeachingUnitInput,
            {
                "code": "INF201",
                "name": "Algorithms",
                "academic_level": "L2",
                "program": "GL",
                "credits": 6,
                "academic_year": year,
            },
        )
        assert not result.success
        assert result.errors[0].field == "academic_year"


class TestComponentInput:
    def test_default_name_comes_from_the_kind(self):
        component = ComponentInput(kind="retake_session", weight_percentage=Decimal("100"))
        assert component.name == "Retake session exam"
        assert component.point_scale == 20

    def test_default_point_scale_comes_from_settings(self, monkeypatch):
        monkeypatch.setenv("GRADING_DEFAULT_POINT_SCALE", "40")
        reset_settings()
        component = ComponentInput(kind="project", weight_percentage=100)
        assert component.point_scale == 40
        assert ComponentInput(kind="project", weight_percentage=100, point_scale=10).point_scale == 10

    def test_explicit_name_is_kept(self):
        component = ComponentInput(kind="project", name="Capstone", weight_percentage=40)
        assert component.name == "Capstone"

    @pytest.mark.parametrize(
        "data",
        [
            {"kind": "oral", "weight_percentage": 10},
            {"kind": "project", "weight_percentage": 101},
            {"kind": "project", "weight_percentage": -5},
            {"kind": "project", "weight_percentage": 10, "point_scale": 0},
        ],
    )
    def test_invalid_components(self, data):
        assert not validate_input(ComponentInput, data).success


class TestEntryInputs:
    def test_sanitization_strips_control_characters(self):
        entry = EvaluationEntryInput(
            student_id=" GL2023001\x00 ",
            component_id=1,
            mark=12,
            entry_date=date(2024, 1, 15),
            author="prof\x0701",
            comment="",
        )
        assert entry.student_id == "GL2023001"
        assert entry.author == "prof01"
        assert entry.comment is None
        assert entry.mode == "manual"

    def test_negative_mark_is_refused(self):
        with pytest.raises(ValidationError) as exc:
            parse_input(BatchEntryRow, {"student_id": "GL2023001", "mark": -0.5})
        assert exc.value.field == "mark"

    def test_too_many_decimals(self):
        assert not validate_input(
            BatchEntryRow, {"student_id": "GL2023001", "mark": "12.345"}
        ).success

    def test_unknown_mode(self):
        result = validate_input(
            EvaluationEntryInput,
            {
                "student_id": "GL2023001",
                "component_id": 1,
                "mark": 12,
                "entry_date": "2024-01-15",
                "author": "prof01",
                "mode": "magic",
            },
        )
        assert [e.field for e in result.errors] == ["mode"]

    def test_patch_needs_a_field(self):
        assert not validate_input(EntryPatch, {}).success
        assert validate_input(EntryPatch, {"comment": "ok"}).success


class TestParseInput:
    def test_single_error_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            parse_input(
                DeliberationParamsInput,
                {"academic_level": "L2", "min_capitalization": 150, "max_non_capitalized_units": 1},
            )
        assert exc.value.field == "min_capitalization"
        assert "min capitalization" in exc.value.user_message.lower()

    def test_several_errors_are_grouped(self):
        with pytest.raises(MultipleValidationError) as exc:
            parse_input(BatchEntryRow, {"student_id": "", "mark": "abc"})
        assert len(exc.value.validation_errors) == 2
        assert {e["field"] for e in exc.value.details["errors"]} == {"student_id", "mark"}

    def test_valid_data_returns_the_model(self):
        row = parse_input(BatchEntryRow, {"student_id": "GL2023001", "mark": "15.5"})
        assert row.mark == Decimal("15.5")
