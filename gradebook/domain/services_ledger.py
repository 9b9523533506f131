from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..infrastructure.config import get_settings
from ..infrastructure.exceptions import (
    ArchivedTeachingUnitError,
    ConcurrentModificationError,
    DatabaseError,
    GradebookError,
    InvalidRangeError,
    ValidationError,
)
from ..infrastructure.logging import LogContext, get_logger
from ..infrastructure.models import (
    EntryStatusChangeORM,
    EvaluationComponentORM,
    EvaluationEntryORM,
    FinalGradeORM,
)
from ..infrastructure.repositories import ComponentRepo, EntryRepo, StudentRepo
from .models import ENTRY_STATUSES, BatchResult
from .schemas import BatchEntryRow, EntryPatch, EvaluationEntryInput, parse_input
from .services import check_status_transition, is_counting
from .services_grades import FinalGradeService

RecomputeKey = tuple[str, str, str]  # (student_id, unit_code, academic_year)


class RecomputeScheduler(Protocol):
    def schedule(self, student_id: str, unit_code: str, academic_year: str) -> None: ...


class InlineRecompute:
    """Recompute the final grade immediately, inside the caller's session."""

    def __init__(self, s: Session):
        self.s = s

    def schedule(self, student_id: str, unit_code: str, academic_year: str) -> None:
        FinalGradeService(self.s).recompute_final_grade(student_id, unit_code, academic_year)


class DeferredRecompute:
    """
    Collect recompute keys and run them later with ``drain``.

    Keys are de-duplicated and kept in scheduling order. Recomputes are
    idempotent, so draining the same key twice is harmless.
    """

    def __init__(self):
        self._pending: dict[RecomputeKey, None] = {}

    def schedule(self, student_id: str, unit_code: str, academic_year: str) -> None:
        self._pending[(student_id, unit_code, academic_year)] = None

    @property
    def pending(self) -> list[RecomputeKey]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def drain(self, s: Session) -> list[FinalGradeORM]:
        service = FinalGradeService(s)
        results = []
        while self._pending:
            key = next(iter(self._pending))
            grade = service.recompute_final_grade(*key)
            # only forget the key once its recompute went through
            del self._pending[key]
            if grade is not None:
                results.append(grade)
        return results


def make_scheduler(s: Session, mode: str | None = None) -> InlineRecompute | DeferredRecompute:
    mode = mode or get_settings().grading.recompute_mode
    if mode == "deferred":
        return DeferredRecompute()
    return InlineRecompute(s)


class EvaluationLedger:
    """
    Write path for raw marks.

    New entries start ``provisional``; re-recording the same (student,
    component) overwrites the entry and bumps its version. Writes that change
    what counts towards a final grade go through the recompute scheduler.
    """

    def __init__(
        self,
        s: Session,
        scheduler: RecomputeScheduler | None = None,
        logger: logging.Logger | None = None,
    ):
        self.s = s
        self.scheduler = scheduler if scheduler is not None else make_scheduler(s)
        self.logger = logger or get_logger(__name__)
        self.entries = EntryRepo(s)
        self.components = ComponentRepo(s)
        self.students = StudentRepo(s)

    # ----- helpers -----

    def _writable_component(self, component_id: int) -> EvaluationComponentORM:
        component = self.components.get_with_unit(component_id)
        if component.unit.status == "archived":
            raise ArchivedTeachingUnitError(component.unit_code)
        return component

    @staticmethod
    def _check_range(mark: Decimal, component: EvaluationComponentORM) -> None:
        if mark < 0 or mark > component.point_scale:
            raise InvalidRangeError(mark, component.point_scale)

    @staticmethod
    def _check_version(entry: EvaluationEntryORM, expected_version: int | None) -> None:
        if expected_version is not None and entry.version != expected_version:
            raise ConcurrentModificationError(entry.id, expected_version, entry.version)

    def _flush(self, entry: EvaluationEntryORM, expected_version: int | None) -> None:
        try:
            self.s.flush()
        except StaleDataError as e:
            raise ConcurrentModificationError(entry.id, expected_version, None) from e

    def _schedule(self, entry: EvaluationEntryORM) -> None:
        unit = entry.component.unit
        self.scheduler.schedule(entry.student_id, unit.code, unit.academic_year)

    # ----- writes -----

    def record_entry(
        self,
        student_id: str,
        component_id: int,
        mark: Decimal | float | int,
        author: str,
        entry_date: date | None = None,
        comment: str | None = None,
        mode: str = "manual",
    ) -> EvaluationEntryORM:
        payload = parse_input(
            EvaluationEntryInput,
            {
                "student_id": student_id,
                "component_id": component_id,
                "mark": mark,
                "entry_date": entry_date or date.today(),
                "author": author,
                "comment": comment,
                "mode": mode,
            },
        )
        component = self._writable_component(payload.component_id)
        self.students.get_required(payload.student_id)
        self._check_range(payload.mark, component)

        with LogContext(student_id=payload.student_id, unit_code=component.unit_code):
            entry = self.entries.get_for(payload.student_id, component.id)
            if entry is None:
                entry = self.entries.add(
                    EvaluationEntryORM(
                        student_id=payload.student_id,
                        component_id=component.id,
                        mark=payload.mark,
                        entry_date=payload.entry_date,
                        author=payload.author,
                        comment=payload.comment,
                        mode=payload.mode,
                        status="provisional",
                    )
                )
                self.logger.info("Recorded entry %d (mark %s)", entry.id, payload.mark)
                return entry

            mark_changed = entry.mark != payload.mark
            entry.mark = payload.mark
            entry.entry_date = payload.entry_date
            entry.author = payload.author
            entry.comment = payload.comment
            entry.mode = payload.mode
            # always an UPDATE, so the version moves on re-submission
            entry.updated_at = datetime.utcnow()
            self._flush(entry, None)
            self.logger.info("Re-recorded entry %d (version %d)", entry.id, entry.version)

            if mark_changed and is_counting(entry.status):
                self._schedule(entry)
            return entry

    def update_entry(
        self,
        entry_id: int,
        patch: Mapping[str, Any] | EntryPatch,
        expected_version: int | None = None,
    ) -> EvaluationEntryORM:
        entry = self.entries.get_required(entry_id)
        self._check_version(entry, expected_version)
        data = dict(patch) if isinstance(patch, Mapping) else patch.model_dump(exclude_unset=True)
        changes = parse_input(EntryPatch, data).model_dump(exclude_unset=True)

        component = self._writable_component(entry.component_id)
        if changes.get("mark") is not None:
            self._check_range(changes["mark"], component)
        elif "mark" in changes:
            raise ValidationError("mark", "Mark cannot be removed from an entry")

        mark_changed = "mark" in changes and changes["mark"] != entry.mark
        for field, value in changes.items():
            setattr(entry, field, value)
        entry.updated_at = datetime.utcnow()
        self._flush(entry, expected_version)
        self.logger.info("Updated entry %d (version %d)", entry.id, entry.version)

        if mark_changed and is_counting(entry.status):
            self._schedule(entry)
        return entry

    def set_status(
        self,
        entry_id: int,
        new_status: str,
        actor: str,
        expected_version: int | None = None,
    ) -> EvaluationEntryORM:
        if new_status not in ENTRY_STATUSES:
            raise ValidationError("status", f"Unknown status '{new_status}'", new_status)
        if not actor or not actor.strip():
            raise ValidationError("actor", "Actor cannot be empty")

        entry = self.entries.get_required(entry_id)
        self._check_version(entry, expected_version)
        previous = entry.status
        check_status_transition(previous, new_status, entry_id)
        self._writable_component(entry.component_id)

        entry.status = new_status
        entry.updated_at = datetime.utcnow()
        self._flush(entry, expected_version)
        self.entries.add_status_change(entry, previous, new_status, actor.strip())
        self.logger.info("Entry %d moved from %s to %s by %s", entry.id, previous, new_status, actor)

        if is_counting(previous) or is_counting(new_status):
            self._schedule(entry)
        return entry

    def record_batch(
        self,
        component_id: int,
        entry_date: date,
        author: str,
        rows: Iterable[Mapping[str, Any] | BatchEntryRow],
        mode: str = "manual",
    ) -> BatchResult:
        """
        Record one mark per row for a single component.

        Rows are validated one by one before anything is written for them; a
        rejected row is reported in the result and the others still go through.
        """
        rows = list(rows)
        limit = get_settings().grading.max_batch_size
        if len(rows) > limit:
            raise ValidationError("rows", f"Batch exceeds the limit of {limit} rows", len(rows))

        result = BatchResult()
        for index, raw in enumerate(rows):
            data = dict(raw) if isinstance(raw, Mapping) else raw.model_dump()
            student_id = str(data.get("student_id", ""))
            try:
                row = parse_input(BatchEntryRow, data)
                self.record_entry(
                    row.student_id,
                    component_id,
                    row.mark,
                    author,
                    entry_date=entry_date,
                    comment=row.comment,
                    mode=mode,
                )
                result.success += 1
            except DatabaseError:
                raise
            except GradebookError as e:
                result.failed += 1
                result.errors.append(
                    {"row": str(index), "student_id": student_id, "error": e.message}
                )
                self.logger.warning("Batch row %d rejected: %s", index, e.message)
        return result

    # ----- reads -----

    def get_entry(self, entry_id: int) -> EvaluationEntryORM:
        return self.entries.get_required(entry_id)

    def list_for_unit(self, unit_code: str, status: str | None = None) -> list[EvaluationEntryORM]:
        return self.entries.list_for_unit(unit_code, statuses=[status] if status else None)

    def list_for_student(
        self, student_id: str, unit_code: str | None = None
    ) -> list[EvaluationEntryORM]:
        self.students.get_required(student_id)
        return self.entries.list_for_student(student_id, unit_code=unit_code)

    def status_history(self, entry_id: int) -> list[EntryStatusChangeORM]:
        self.entries.get_required(entry_id)
        return self.entries.list_status_changes(entry_id)
