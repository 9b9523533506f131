# gradebook/infrastructure/repositories_unit.py
from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from .exceptions import UnknownTeachingUnitError
from .logging import log_database_operation as log_op
from .models import EvaluationComponentORM, EvaluationEntryORM, TeachingUnitORM
from .repositories_base import BaseRepository


class TeachingUnitRepo(BaseRepository[TeachingUnitORM]):
    """Repository for teaching units (UE), keyed by their code."""

    model = TeachingUnitORM
    not_found = UnknownTeachingUnitError

    @log_op("list_units_for_level")
    def list_for_level(self, academic_level: str, academic_year: str) -> list[TeachingUnitORM]:
        """Every unit configured for (level, year), whatever its status."""
        try:
            return (
                self.s.query(TeachingUnitORM)
                .filter_by(academic_level=academic_level, academic_year=academic_year)
                .order_by(TeachingUnitORM.code)
                .all()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "list_units_for_level")

    @log_op("get_unit_by_name")
    def get_by_name(
        self, name: str, academic_level: str, program: str, academic_year: str
    ) -> TeachingUnitORM | None:
        try:
            return (
                self.s.query(TeachingUnitORM)
                .filter_by(
                    name=name,
                    academic_level=academic_level,
                    program=program,
                    academic_year=academic_year,
                )
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "get_unit_by_name")

    @log_op("count_unit_entries")
    def count_entries(self, code: str) -> int:
        """Number of evaluation entries recorded on any component of the unit."""
        try:
            return int(
                self.s.query(EvaluationEntryORM)
                .join(EvaluationComponentORM)
                .filter(EvaluationComponentORM.unit_code == code)
                .count()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "count_unit_entries")
