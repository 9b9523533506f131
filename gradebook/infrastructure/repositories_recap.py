# gradebook/infrastructure/repositories_recap.py
from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from .exceptions import UnknownRecapError
from .logging import log_database_operation as log_op
from .models import StudentORM, StudentRecapORM
from .repositories_base import BaseRepository


class RecapRepo(BaseRepository[StudentRecapORM]):
    """Repository for per (student, level, year) recaps."""

    model = StudentRecapORM
    not_found = UnknownRecapError

    @log_op("get_recap")
    def get_for(
        self, student_id: str, academic_level: str, academic_year: str
    ) -> StudentRecapORM | None:
        try:
            return (
                self.s.query(StudentRecapORM)
                .filter_by(
                    student_id=student_id,
                    academic_level=academic_level,
                    academic_year=academic_year,
                )
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "get_recap")

    def get_for_required(
        self, student_id: str, academic_level: str, academic_year: str
    ) -> StudentRecapORM:
        recap = self.get_for(student_id, academic_level, academic_year)
        if recap is None:
            raise UnknownRecapError(f"{student_id}/{academic_level}/{academic_year}")
        return recap

    @log_op("list_recaps_for_level")
    def list_for_level(
        self, academic_level: str, academic_year: str
    ) -> list[tuple[StudentRecapORM, StudentORM]]:
        """Recaps of the level joined with the student identity, unordered."""
        try:
            rows = (
                self.s.query(StudentRecapORM, StudentORM)
                .join(StudentORM, StudentORM.student_id == StudentRecapORM.student_id)
                .filter(
                    StudentRecapORM.academic_level == academic_level,
                    StudentRecapORM.academic_year == academic_year,
                )
                .all()
            )
            return [(recap, student) for recap, student in rows]
        except SQLAlchemyError as e:
            self._handle_error(e, "list_recaps_for_level")
