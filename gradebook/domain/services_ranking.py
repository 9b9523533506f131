from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..infrastructure.exceptions import NoStudentsForLevelError
from ..infrastructure.logging import get_logger
from ..infrastructure.repositories import RecapRepo
from .models import ClassSummary, RankingRow
from .services import compute_statistics, rank_rows


class RankingService:
    """
    Class ranking for a level and year, read from the stored recaps.

    Two concurrent ``rank_level`` calls may interleave; the last one to commit
    wins.
    """

    def __init__(self, s: Session, logger: logging.Logger | None = None):
        self.s = s
        self.logger = logger or get_logger(__name__)
        self.recaps = RecapRepo(s)

    def rank_level(self, academic_level: str, academic_year: str) -> list[RankingRow]:
        pairs = self.recaps.list_for_level(academic_level, academic_year)
        if not pairs:
            raise NoStudentsForLevelError(academic_level, academic_year)

        recaps = {recap.student_id: recap for recap, _ in pairs}
        ranked = rank_rows(
            RankingRow(
                rank=0,
                student_id=recap.student_id,
                last_name=student.last_name,
                first_name=student.first_name,
                unweighted_average=recap.unweighted_average,
                weighted_average=recap.weighted_average,
                capitalization_percentage=recap.capitalization_percentage,
                decision=recap.decision,
                mention=recap.overall_mention,
            )
            for recap, student in pairs
        )

        for row in ranked:
            recap = recaps[row.student_id]
            if recap.rank != row.rank:
                recap.rank = row.rank
        self.s.flush()
        self.logger.info(
            "Ranked %d students for %s %s", len(ranked), academic_level, academic_year
        )
        return ranked

    def class_summary(self, academic_level: str, academic_year: str) -> ClassSummary:
        """Statistics over the present unweighted averages; missing ones are ignored."""
        averages = [
            recap.unweighted_average
            for recap, _ in self.recaps.list_for_level(academic_level, academic_year)
            if recap.unweighted_average is not None
        ]
        if not averages:
            return ClassSummary(
                academic_level=academic_level,
                academic_year=academic_year,
                count=0,
                mean=None,
                std_dev=None,
                minimum=None,
                maximum=None,
                pass_rate=None,
            )

        stats = compute_statistics(averages)
        return ClassSummary(
            academic_level=academic_level,
            academic_year=academic_year,
            count=stats.count,
            mean=stats.mean,
            std_dev=stats.std_dev,
            minimum=stats.minimum,
            maximum=stats.maximum,
            pass_rate=stats.pass_rate,
        )
