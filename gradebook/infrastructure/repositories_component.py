# gradebook/infrastructure/repositories_component.py
from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from .exceptions import UnknownComponentError
from .logging import log_database_operation as log_op
from .models import EvaluationComponentORM, EvaluationEntryORM
from .repositories_base import BaseRepository


class ComponentRepo(BaseRepository[EvaluationComponentORM]):
    """Repository for the evaluation components of a teaching unit."""

    model = EvaluationComponentORM
    not_found = UnknownComponentError

    def get_with_unit(self, component_id: int) -> EvaluationComponentORM:
        obj = (
            self.s.query(EvaluationComponentORM)
            .options(joinedload(EvaluationComponentORM.unit))
            .filter_by(id=component_id)
            .one_or_none()
        )
        if obj is None:
            raise UnknownComponentError(component_id)
        return obj

    @log_op("list_components_for_unit")
    def list_for_unit(self, unit_code: str) -> list[EvaluationComponentORM]:
        try:
            return (
                self.s.query(EvaluationComponentORM)
                .filter_by(unit_code=unit_code)
                .order_by(EvaluationComponentORM.position, EvaluationComponentORM.id)
                .all()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "list_components_for_unit")

    def get_by_kind(self, unit_code: str, kind: str) -> EvaluationComponentORM | None:
        return (
            self.s.query(EvaluationComponentORM)
            .filter_by(unit_code=unit_code, kind=kind)
            .one_or_none()
        )

    def has_entries(self, component_id: int) -> bool:
        return self.s.query(EvaluationEntryORM).filter_by(component_id=component_id).first() is not None
