from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from ..infrastructure.exceptions import NoTeachingUnitsForLevelError
from ..infrastructure.logging import LogContext, get_logger
from ..infrastructure.models import StudentRecapORM
from ..infrastructure.repositories import FinalGradeRepo, RecapRepo, StudentRepo, TeachingUnitRepo
from .models import RecapComputation, UnitResult
from .schemas import DeliberationDecisionInput, parse_input
from .services import compute_recap


def _recap_values(computation: RecapComputation) -> dict[str, Any]:
    return {
        "unweighted_average": computation.unweighted_average,
        "weighted_average": computation.weighted_average,
        "capitalization_percentage": computation.capitalization_percentage,
        "capitalized_units": computation.capitalized_units,
        "total_units": computation.total_units,
        "obtained_credits": computation.obtained_credits,
        "total_credits": computation.total_credits,
        "is_subject_to_deliberation": computation.subject_to_deliberation,
        "overall_mention": computation.overall_mention,
        "decision": computation.decision,
    }


class RecapService:
    """Per-level recap of a student's final grades."""

    def __init__(self, s: Session, logger: logging.Logger | None = None):
        self.s = s
        self.logger = logger or get_logger(__name__)
        self.recaps = RecapRepo(s)
        self.grades = FinalGradeRepo(s)
        self.units = TeachingUnitRepo(s)
        self.students = StudentRepo(s)

    def compute_recap_details(
        self, student_id: str, academic_level: str, academic_year: str
    ) -> RecapComputation:
        """Aggregate without persisting; carries the per-unit breakdown."""
        self.students.get_required(student_id)
        units = self.units.list_for_level(academic_level, academic_year)
        if not units:
            raise NoTeachingUnitsForLevelError(academic_level, academic_year)

        grades = {
            g.unit_code: g
            for g in self.grades.list_for_student(student_id, academic_level, academic_year)
        }
        results = []
        for unit in units:
            grade = grades.get(unit.code)
            results.append(
                UnitResult(
                    unit_code=unit.code,
                    unit_name=unit.name,
                    credits=unit.credits,
                    final_grade=grade.grade if grade else None,
                    capitalized=bool(grade and grade.capitalized),
                    mention=grade.mention if grade else None,
                )
            )
        return compute_recap(results)

    def recompute_recap(
        self, student_id: str, academic_level: str, academic_year: str
    ) -> StudentRecapORM:
        """
        Rebuild the stored recap.

        A decision recorded by the jury survives recomputation; with unchanged
        inputs the stored row is returned untouched.
        """
        with LogContext(
            student_id=student_id, academic_level=academic_level, academic_year=academic_year
        ):
            computation = self.compute_recap_details(student_id, academic_level, academic_year)
            values = _recap_values(computation)

            recap = self.recaps.get_for(student_id, academic_level, academic_year)
            if recap is None:
                recap = self.recaps.add(
                    StudentRecapORM(
                        student_id=student_id,
                        academic_level=academic_level,
                        academic_year=academic_year,
                        computed_at=datetime.utcnow(),
                        **values,
                    )
                )
                self.logger.info("Recap created (average %s)", computation.unweighted_average)
                return recap

            if recap.has_been_deliberated:
                values.pop("decision")
            changes = {k: v for k, v in values.items() if getattr(recap, k) != v}
            if not changes:
                return recap

            self.recaps.update(recap, computed_at=datetime.utcnow(), **changes)
            self.logger.info("Recap updated: %s", ", ".join(sorted(changes)))
            return recap

    def recompute_level(self, academic_level: str, academic_year: str) -> list[StudentRecapORM]:
        """Recompute the recap of every student enrolled in (level, year)."""
        return [
            self.recompute_recap(student.student_id, academic_level, academic_year)
            for student in self.students.list_enrolled(academic_level, academic_year)
        ]

    def get_recap(
        self, student_id: str, academic_level: str, academic_year: str
    ) -> StudentRecapORM | None:
        return self.recaps.get_for(student_id, academic_level, academic_year)

    def record_deliberation(
        self,
        student_id: str,
        academic_level: str,
        academic_year: str,
        decision: str,
        actor: str,
    ) -> StudentRecapORM:
        """Store the jury decision on an existing recap."""
        payload = parse_input(DeliberationDecisionInput, {"decision": decision, "actor": actor})
        recap = self.recaps.get_for_required(student_id, academic_level, academic_year)
        self.recaps.update(
            recap,
            decision=payload.decision,
            has_been_deliberated=True,
            deliberated_by=payload.actor,
            deliberated_at=datetime.utcnow(),
        )
        self.logger.info(
            "Deliberation recorded for %s: %s by %s", student_id, payload.decision, payload.actor
        )
        return recap
