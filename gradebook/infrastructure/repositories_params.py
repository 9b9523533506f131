# gradebook/infrastructure/repositories_params.py
from __future__ import annotations

from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from .logging import log_database_operation as log_op
from .models import DeliberationParamsORM
from .repositories_base import BaseRepository


class DeliberationParamsRepo(BaseRepository[DeliberationParamsORM]):
    """
    Per-level deliberation thresholds.

    The engine only reads these; ``upsert`` exists for the administrative
    surface that owns them and for seeding.
    """

    model = DeliberationParamsORM

    @log_op("get_deliberation_params")
    def get_for_level(self, academic_level: str) -> DeliberationParamsORM | None:
        try:
            return (
                self.s.query(DeliberationParamsORM)
                .filter_by(academic_level=academic_level)
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "get_deliberation_params")

    @log_op("upsert_deliberation_params")
    def upsert(
        self,
        academic_level: str,
        min_capitalization: Decimal,
        max_non_capitalized_units: int,
        updated_by: str | None = None,
    ) -> DeliberationParamsORM:
        try:
            obj = self.get_for_level(academic_level)
            if obj is None:
                obj = DeliberationParamsORM(academic_level=academic_level)
                self.s.add(obj)
            obj.min_capitalization = min_capitalization
            obj.max_non_capitalized_units = max_non_capitalized_units
            obj.updated_by = updated_by
            self.s.flush()
            return obj
        except SQLAlchemyError as e:
            self._handle_error(e, "upsert_deliberation_params")
