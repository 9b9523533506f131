from decimal import Decimal

import pytest

from gradebook.domain.schemas import DeliberationParamsInput
from gradebook.domain.services import evaluate_criteria
from gradebook.domain.services_deliberation import DeliberationService
from gradebook.domain.services_recap import RecapService
from gradebook.infrastructure.exceptions import (
    MissingDeliberationParamsError,
    MultipleValidationError,
    ValidationError,
)
from gradebook.infrastructure.repositories import DeliberationParamsRepo

LEVEL, YEAR = "L2", "2023-2024"


@pytest.fixture
def failing_student(make_unit, make_student, put_grade):
    """Capitalizes 16 of 20 credits, misses two small units."""
    for code, credits in (("INF201", 8), ("INF202", 8), ("INF203", 2), ("MAT201", 2)):
        make_unit(code, credits=credits, components=[])
    make_student("GL2023001")
    for code, grade in (("INF201", 12), ("INF202", 14), ("INF203", 8), ("MAT201", 6)):
        put_grade("GL2023001", code, grade)
    return "GL2023001"


@pytest.fixture
def service(session):
    return DeliberationService(session)


class TestCriteria:
    def test_both_thresholds_met(self):
        eligible, criteria, reason = evaluate_criteria(Decimal("80"), 4, 3, Decimal("75"), 1)
        assert eligible is True
        assert reason is None
        assert [c.passed for c in criteria] == [True, True]

    def test_threshold_boundaries_are_inclusive(self):
        eligible, _, _ = evaluate_criteria(Decimal("75"), 4, 3, Decimal("75"), 1)
        assert eligible is True

    def test_every_failed_criterion_is_named(self):
        eligible, criteria, reason = evaluate_criteria(Decimal("40"), 5, 2, Decimal("75"), 1)
        assert eligible is False
        assert [c.name for c in criteria if not c.passed] == [
            "capitalization_percentage",
            "non_capitalized_units",
        ]
        assert reason == "Criteria not met: capitalization_percentage, non_capitalized_units"


class TestEvaluateEligibility:
    def test_too_many_missed_units(self, service, failing_student):
        service.set_params(LEVEL, 75, 1)

        verdict = service.evaluate_eligibility(failing_student, LEVEL, YEAR)

        assert verdict.eligible is False
        assert verdict.capitalization_percentage == Decimal("80.00")
        assert verdict.non_capitalized_units == 2
        assert verdict.total_units == 4
        assert [c.name for c in verdict.failed_criteria] == ["non_capitalized_units"]
        assert "non_capitalized_units" in verdict.reason

    def test_looser_params_make_the_student_eligible(self, session, service, failing_student):
        verdict = service.evaluate_eligibility(
            failing_student,
            LEVEL,
            YEAR,
            params={"min_capitalization": 75, "max_non_capitalized_units": 2},
        )

        assert verdict.eligible is True
        assert verdict.reason is None
        recap = RecapService(session).get_recap(failing_student, LEVEL, YEAR)
        assert recap.is_eligible_for_deliberation is True

    def test_schema_params_are_accepted(self, service, failing_student):
        params = DeliberationParamsInput(
            academic_level=LEVEL, min_capitalization=Decimal("85"), max_non_capitalized_units=2
        )
        verdict = service.evaluate_eligibility(failing_student, LEVEL, YEAR, params=params)
        assert [c.name for c in verdict.failed_criteria] == ["capitalization_percentage"]

    def test_missing_params(self, service, failing_student):
        with pytest.raises(MissingDeliberationParamsError):
            service.evaluate_eligibility(failing_student, LEVEL, YEAR)

    def test_verdict_reflects_current_grades(self, session, service, failing_student):
        service.set_params(LEVEL, 75, 1)
        assert service.evaluate_eligibility(failing_student, LEVEL, YEAR).eligible is False

        grade = next(
            g
            for g in RecapService(session).grades.list_for_student(failing_student, LEVEL, YEAR)
            if g.unit_code == "MAT201"
        )
        grade.grade = Decimal("10.50")
        grade.capitalized = True
        session.flush()

        verdict = service.evaluate_eligibility(failing_student, LEVEL, YEAR)
        assert verdict.eligible is True
        assert verdict.capitalization_percentage == Decimal("90.00")


class TestDeliberationParams:
    def test_set_params_upserts(self, session, service):
        service.set_params(LEVEL, 75, 1, updated_by="admin")
        service.set_params(LEVEL, "80.5", 2)

        stored = DeliberationParamsRepo(session).get_for_level(LEVEL)
        assert stored.min_capitalization == Decimal("80.5")
        assert stored.max_non_capitalized_units == 2

    def test_invalid_params(self, service):
        with pytest.raises(ValidationError):
            service.set_params(LEVEL, 120, 1)
        with pytest.raises(MultipleValidationError):
            service.set_params("X9", -1, -1)
