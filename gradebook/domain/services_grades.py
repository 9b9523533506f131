from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from ..infrastructure.logging import LogContext, get_logger
from ..infrastructure.models import EvaluationEntryORM, FinalGradeORM
from ..infrastructure.repositories import EntryRepo, FinalGradeRepo, StudentRepo, TeachingUnitRepo
from .models import COUNTING_STATUSES, GradeContribution
from .services import compute_final_grade, grade_contribution


def _contribution(entry: EvaluationEntryORM) -> GradeContribution:
    component = entry.component
    return grade_contribution(
        component_id=component.id,
        kind=component.kind,
        status=entry.status,
        mark=entry.mark,
        point_scale=component.point_scale,
        weight_percentage=component.weight_percentage,
    )


class FinalGradeService:
    """
    Final grade aggregation for one (student, unit, year).

    Recomputation is idempotent: with unchanged ledger state the stored row is
    returned as is, computation version included.
    """

    def __init__(self, s: Session, logger: logging.Logger | None = None):
        self.s = s
        self.logger = logger or get_logger(__name__)
        self.grades = FinalGradeRepo(s)
        self.entries = EntryRepo(s)
        self.units = TeachingUnitRepo(s)
        self.students = StudentRepo(s)

    def recompute_final_grade(
        self, student_id: str, unit_code: str, academic_year: str | None = None
    ) -> FinalGradeORM | None:
        """
        Rebuild the final grade from the student's counting entries on the unit.

        Returns None, leaving any stored row untouched, when no entry is in a
        counting status.
        """
        unit = self.units.get_required(unit_code)
        self.students.get_required(student_id)
        year = academic_year or unit.academic_year

        with LogContext(student_id=student_id, unit_code=unit_code, academic_year=year):
            entries = self.entries.list_for_student(
                student_id, unit_code=unit_code, statuses=COUNTING_STATUSES
            )
            computation = compute_final_grade([_contribution(e) for e in entries])
            if computation is None:
                self.logger.debug("No counting entries, final grade left unchanged")
                return None

            existing = self.grades.get_for(student_id, unit_code, year)
            if existing is None:
                grade = self.grades.add(
                    FinalGradeORM(
                        student_id=student_id,
                        unit_code=unit_code,
                        academic_year=year,
                        grade=computation.grade,
                        capitalized=computation.capitalized,
                        mention=computation.mention,
                        computation_version=1,
                        computed_at=datetime.utcnow(),
                    )
                )
                self.logger.info("Final grade computed: %s", computation.grade)
                return grade

            if (
                existing.grade == computation.grade
                and existing.capitalized == computation.capitalized
                and existing.mention == computation.mention
            ):
                return existing

            self.grades.update(
                existing,
                grade=computation.grade,
                capitalized=computation.capitalized,
                mention=computation.mention,
                computation_version=existing.computation_version + 1,
                computed_at=datetime.utcnow(),
            )
            self.logger.info(
                "Final grade updated to %s (version %d)",
                computation.grade,
                existing.computation_version,
            )
            return existing

    def recompute_unit(self, unit_code: str, academic_year: str | None = None) -> list[FinalGradeORM]:
        """Recompute the final grade of every student holding an entry on the unit."""
        student_ids = sorted({e.student_id for e in self.entries.list_for_unit(unit_code)})
        results = []
        for student_id in student_ids:
            grade = self.recompute_final_grade(student_id, unit_code, academic_year)
            if grade is not None:
                results.append(grade)
        return results

    def get_final_grade(
        self, student_id: str, unit_code: str, academic_year: str
    ) -> FinalGradeORM | None:
        return self.grades.get_for(student_id, unit_code, academic_year)

    def grade_breakdown(self, student_id: str, unit_code: str) -> list[GradeContribution]:
        """Per-component contributions of every entry, counting or not."""
        self.units.get_required(unit_code)
        return [
            _contribution(e) for e in self.entries.list_for_student(student_id, unit_code=unit_code)
        ]
