from decimal import Decimal

import pytest

from gradebook.domain.models import RankingRow
from gradebook.domain.services import rank_rows
from gradebook.domain.services_ranking import RankingService
from gradebook.infrastructure.exceptions import NoStudentsForLevelError
from gradebook.infrastructure.repositories import RecapRepo

LEVEL, YEAR = "L2", "2023-2024"


def row(student_id, unweighted, weighted=None):
    return RankingRow(
        rank=0,
        student_id=student_id,
        last_name=None,
        first_name=None,
        unweighted_average=None if unweighted is None else Decimal(str(unweighted)),
        weighted_average=None if weighted is None else Decimal(str(weighted)),
        capitalization_percentage=None,
        decision=None,
        mention=None,
    )


class TestRankRows:
    def test_ties_are_broken_by_student_id(self):
        ranked = rank_rows([row("S3", 12), row("S2", 15), row("S1", 15)])
        assert [(r.student_id, r.rank) for r in ranked] == [("S1", 1), ("S2", 2), ("S3", 3)]

    def test_weighted_average_breaks_unweighted_ties(self):
        ranked = rank_rows([row("S1", 14, 13), row("S2", 14, 15)])
        assert [r.student_id for r in ranked] == ["S2", "S1"]

    def test_missing_averages_rank_last(self):
        ranked = rank_rows([row("S1", None), row("S2", 4), row("S3", 18)])
        assert [r.student_id for r in ranked] == ["S3", "S2", "S1"]
        assert ranked[-1].rank == 3

    def test_ranks_are_dense_and_distinct(self):
        ranked = rank_rows([row(f"S{n}", 10) for n in range(5)])
        assert [r.rank for r in ranked] == [1, 2, 3, 4, 5]


class TestRankingService:
    def test_rank_level_persists_ranks(self, session, make_student, put_recap):
        for student_id, last_name in (("GL2023001", "Ba"), ("GL2023002", "Diallo"), ("GL2023003", "Fall")):
            make_student(student_id, last_name=last_name)
        put_recap("GL2023003", 12)
        put_recap("GL2023002", 15)
        put_recap("GL2023001", 15)

        ranked = RankingService(session).rank_level(LEVEL, YEAR)

        assert [(r.rank, r.student_id, r.last_name) for r in ranked] == [
            (1, "GL2023001", "Ba"),
            (2, "GL2023002", "Diallo"),
            (3, "GL2023003", "Fall"),
        ]
        stored = {recap.student_id: recap.rank for recap, _ in RecapRepo(session).list_for_level(LEVEL, YEAR)}
        assert stored == {"GL2023001": 1, "GL2023002": 2, "GL2023003": 3}

    def test_other_levels_are_not_ranked(self, session, make_student, put_recap):
        make_student("GL2023001")
        make_student("GL2023002", level="L3")
        put_recap("GL2023001", 11)
        put_recap("GL2023002", 19, level="L3")

        ranked = RankingService(session).rank_level(LEVEL, YEAR)
        assert [r.student_id for r in ranked] == ["GL2023001"]

    def test_empty_level_raises(self, session):
        with pytest.raises(NoStudentsForLevelError):
            RankingService(session).rank_level(LEVEL, YEAR)


class TestClassSummary:
    def test_summary_ignores_missing_averages(self, session, make_student, put_recap):
        for n, average in enumerate((8, 12, 16, None), start=1):
            make_student(f"GL202300{n}")
            put_recap(f"GL202300{n}", average)

        summary = RankingService(session).class_summary(LEVEL, YEAR)

        assert summary.count == 3
        assert summary.mean == Decimal("12.00")
        assert summary.minimum == Decimal("8.00")
        assert summary.maximum == Decimal("16.00")
        assert summary.std_dev == Decimal("3.27")
        assert summary.pass_rate == Decimal("66.67")

    def test_empty_summary(self, session):
        summary = RankingService(session).class_summary(LEVEL, YEAR)
        assert summary.count == 0
        assert summary.mean is None
        assert summary.pass_rate is None
