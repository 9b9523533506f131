# gradebook/infrastructure/repositories_grade.py
from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from .logging import log_database_operation as log_op
from .models import FinalGradeORM, TeachingUnitORM
from .repositories_base import BaseRepository


class FinalGradeRepo(BaseRepository[FinalGradeORM]):
    """Repository for the derived per-unit final grades."""

    model = FinalGradeORM

    @log_op("get_final_grade")
    def get_for(self, student_id: str, unit_code: str, academic_year: str) -> FinalGradeORM | None:
        try:
            return (
                self.s.query(FinalGradeORM)
                .filter_by(student_id=student_id, unit_code=unit_code, academic_year=academic_year)
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "get_final_grade")

    @log_op("list_grades_for_student")
    def list_for_student(
        self, student_id: str, academic_level: str, academic_year: str
    ) -> list[FinalGradeORM]:
        try:
            return (
                self.s.query(FinalGradeORM)
                .join(TeachingUnitORM)
                .options(joinedload(FinalGradeORM.unit))
                .filter(
                    FinalGradeORM.student_id == student_id,
                    FinalGradeORM.academic_year == academic_year,
                    TeachingUnitORM.academic_level == academic_level,
                )
                .order_by(FinalGradeORM.unit_code)
                .all()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "list_grades_for_student")

    @log_op("list_grades_for_unit")
    def list_for_unit(self, unit_code: str, academic_year: str) -> list[FinalGradeORM]:
        try:
            return (
                self.s.query(FinalGradeORM)
                .filter_by(unit_code=unit_code, academic_year=academic_year)
                .order_by(FinalGradeORM.student_id)
                .all()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "list_grades_for_unit")
