# gradebook/infrastructure/repositories_statistics.py
from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from .logging import log_database_operation as log_op
from .models import UEStatisticsORM
from .repositories_base import BaseRepository


class StatisticsRepo(BaseRepository[UEStatisticsORM]):
    model = UEStatisticsORM

    @log_op("get_ue_statistics")
    def get_for(self, unit_code: str, academic_year: str) -> UEStatisticsORM | None:
        try:
            return (
                self.s.query(UEStatisticsORM)
                .filter_by(unit_code=unit_code, academic_year=academic_year)
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "get_ue_statistics")
