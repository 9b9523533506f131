from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime

from sqlalchemy.orm import Session

from ..infrastructure.exceptions import NoGradesForUnitError
from ..infrastructure.logging import LogContext, get_logger
from ..infrastructure.models import UEStatisticsORM
from ..infrastructure.repositories import FinalGradeRepo, StatisticsRepo, TeachingUnitRepo
from .services import compute_statistics


class StatisticsService:
    """Grade distribution of a teaching unit, persisted per (unit, year)."""

    def __init__(self, s: Session, logger: logging.Logger | None = None):
        self.s = s
        self.logger = logger or get_logger(__name__)
        self.stats = StatisticsRepo(s)
        self.grades = FinalGradeRepo(s)
        self.units = TeachingUnitRepo(s)

    def compute_ue_statistics(
        self, unit_code: str, academic_year: str | None = None
    ) -> UEStatisticsORM:
        unit = self.units.get_required(unit_code)
        year = academic_year or unit.academic_year

        with LogContext(unit_code=unit_code, academic_year=year):
            grades = [g.grade for g in self.grades.list_for_unit(unit_code, year)]
            if not grades:
                raise NoGradesForUnitError(unit_code, year)

            values = asdict(compute_statistics(grades))
            row = self.stats.get_for(unit_code, year)
            if row is None:
                row = self.stats.add(
                    UEStatisticsORM(
                        unit_code=unit_code,
                        academic_year=year,
                        computed_at=datetime.utcnow(),
                        **values,
                    )
                )
                self.logger.info("Statistics computed over %d grades", values["count"])
                return row

            if all(getattr(row, k) == v for k, v in values.items()):
                return row
            self.stats.update(row, computed_at=datetime.utcnow(), **values)
            self.logger.info("Statistics refreshed over %d grades", values["count"])
            return row

    def get_ue_statistics(self, unit_code: str, academic_year: str) -> UEStatisticsORM | None:
        return self.stats.get_for(unit_code, academic_year)
