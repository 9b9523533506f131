from decimal import Decimal

import pytest

from gradebook.domain.services import compute_statistics
from gradebook.domain.services_statistics import StatisticsService
from gradebook.infrastructure.exceptions import NoGradesForUnitError, UnknownTeachingUnitError

GRADES = [8, 10, 12, 14, 16, 18, 20]


@pytest.fixture
def graded_unit(make_unit, make_student, put_grade):
    make_unit("INF201", components=[])
    for n, grade in enumerate(GRADES, start=1):
        make_student(f"GL202300{n}")
        put_grade(f"GL202300{n}", "INF201", grade)


class TestComputeStatistics:
    def test_distribution(self):
        stats = compute_statistics([Decimal(g) for g in GRADES])

        assert stats.count == 7
        assert stats.mean == Decimal("14.00")
        assert stats.median == Decimal("14.00")
        assert stats.std_dev == Decimal("4.00")
        assert stats.q1 == Decimal("11.00")
        assert stats.q3 == Decimal("17.00")
        assert stats.minimum == Decimal("8.00")
        assert stats.maximum == Decimal("20.00")
        assert stats.pass_count == 6
        assert stats.fail_count == 1
        assert stats.pass_rate == Decimal("85.71")

    def test_single_grade(self):
        stats = compute_statistics([Decimal("9.5")])
        assert stats.std_dev == Decimal("0.00")
        assert stats.q1 == stats.median == stats.q3 == Decimal("9.50")
        assert stats.pass_rate == Decimal("0.00")

    def test_empty_input_is_refused(self):
        with pytest.raises(ValueError):
            compute_statistics([])


class TestStatisticsService:
    def test_compute_persists_a_row(self, session, graded_unit):
        row = StatisticsService(session).compute_ue_statistics("INF201")

        assert row.academic_year == "2023-2024"
        assert row.count == 7
        assert row.mean == Decimal("14.00")
        assert row.pass_rate == Decimal("85.71")

    def test_recompute_is_idempotent(self, session, graded_unit):
        service = StatisticsService(session)
        first = service.compute_ue_statistics("INF201")
        computed_at = first.computed_at

        second = service.compute_ue_statistics("INF201", "2023-2024")
        assert second.id == first.id
        assert second.computed_at == computed_at
        assert service.get_ue_statistics("INF201", "2023-2024") is first

    def test_new_grade_refreshes_the_row(self, session, graded_unit, make_student, put_grade):
        service = StatisticsService(session)
        service.compute_ue_statistics("INF201")

        make_student("GL2023008")
        put_grade("GL2023008", "INF201", 0)
        row = service.compute_ue_statistics("INF201")

        assert row.count == 8
        assert row.fail_count == 2
        assert row.minimum == Decimal("0.00")

    def test_unit_without_grades(self, session, make_unit):
        make_unit("INF202", components=[])
        with pytest.raises(NoGradesForUnitError):
            StatisticsService(session).compute_ue_statistics("INF202")

    def test_unknown_unit(self, session):
        with pytest.raises(UnknownTeachingUnitError):
            StatisticsService(session).compute_ue_statistics("NOPE")
