# gradebook/infrastructure/repositories_entry.py
from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from .exceptions import UnknownEntryError
from .logging import log_database_operation as log_op
from .models import EntryStatusChangeORM, EvaluationComponentORM, EvaluationEntryORM
from .repositories_base import BaseRepository


class EntryRepo(BaseRepository[EvaluationEntryORM]):
    """
    Repository for evaluation entries (one raw mark per student and component).

    Rows carry an ORM-managed ``version`` column; flushing an UPDATE against a
    row whose version moved on raises ``StaleDataError``.
    """

    model = EvaluationEntryORM
    not_found = UnknownEntryError

    def get_required(self, entry_id: int) -> EvaluationEntryORM:
        obj = (
            self.s.query(EvaluationEntryORM)
            .options(joinedload(EvaluationEntryORM.component).joinedload(EvaluationComponentORM.unit))
            .filter_by(id=entry_id)
            .one_or_none()
        )
        if obj is None:
            raise UnknownEntryError(entry_id)
        return obj

    @log_op("get_entry")
    def get_for(self, student_id: str, component_id: int) -> EvaluationEntryORM | None:
        try:
            return (
                self.s.query(EvaluationEntryORM)
                .filter_by(student_id=student_id, component_id=component_id)
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "get_entry")

    @log_op("list_entries_for_unit")
    def list_for_unit(
        self, unit_code: str, statuses: Iterable[str] | None = None
    ) -> list[EvaluationEntryORM]:
        try:
            q = (
                self.s.query(EvaluationEntryORM)
                .join(EvaluationComponentORM)
                .options(joinedload(EvaluationEntryORM.component))
                .filter(EvaluationComponentORM.unit_code == unit_code)
            )
            if statuses is not None:
                q = q.filter(EvaluationEntryORM.status.in_(list(statuses)))
            return q.order_by(
                EvaluationEntryORM.student_id, EvaluationComponentORM.position
            ).all()
        except SQLAlchemyError as e:
            self._handle_error(e, "list_entries_for_unit")

    @log_op("list_entries_for_student")
    def list_for_student(
        self,
        student_id: str,
        unit_code: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[EvaluationEntryORM]:
        try:
            q = (
                self.s.query(EvaluationEntryORM)
                .join(EvaluationComponentORM)
                .options(joinedload(EvaluationEntryORM.component))
                .filter(EvaluationEntryORM.student_id == student_id)
            )
            if unit_code is not None:
                q = q.filter(EvaluationComponentORM.unit_code == unit_code)
            if statuses is not None:
                q = q.filter(EvaluationEntryORM.status.in_(list(statuses)))
            return q.order_by(
                EvaluationComponentORM.unit_code, EvaluationComponentORM.position
            ).all()
        except SQLAlchemyError as e:
            self._handle_error(e, "list_entries_for_student")

    @log_op("max_mark_for_component")
    def max_mark(self, component_id: int) -> Decimal | None:
        """Highest mark recorded on the component, whatever the entry status."""
        try:
            return (
                self.s.query(func.max(EvaluationEntryORM.mark))
                .filter(EvaluationEntryORM.component_id == component_id)
                .scalar()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "max_mark_for_component")

    @log_op("record_status_change")
    def add_status_change(
        self, entry: EvaluationEntryORM, previous_status: str, new_status: str, actor: str
    ) -> EntryStatusChangeORM:
        change = EntryStatusChangeORM(
            entry_id=entry.id,
            previous_status=previous_status,
            new_status=new_status,
            actor=actor,
        )
        return self.add(change)

    def list_status_changes(self, entry_id: int) -> list[EntryStatusChangeORM]:
        return (
            self.s.query(EntryStatusChangeORM)
            .filter_by(entry_id=entry_id)
            .order_by(EntryStatusChangeORM.id)
            .all()
        )
