# gradebook/infrastructure/repositories_student.py
from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from .exceptions import UnknownStudentError, ValidationError
from .logging import log_database_operation as log_op
from .models import EnrollmentORM, StudentORM
from .repositories_base import BaseRepository


class StudentRepo(BaseRepository[StudentORM]):
    """
    Local mirror of student identities and their yearly enrollments.

    The identity service owns students; this repository only keeps the subset
    the grade engine needs to resolve references and list a class.
    """

    model = StudentORM
    not_found = UnknownStudentError

    @log_op("upsert_student")
    def upsert(
        self, student_id: str, last_name: str, first_name: str, is_active: bool = True
    ) -> StudentORM:
        if not student_id or not student_id.strip():
            raise ValidationError("student_id", "Student ID cannot be empty")

        try:
            obj = self.s.get(StudentORM, student_id.strip())
            if obj is None:
                obj = StudentORM(student_id=student_id.strip())
                self.s.add(obj)
            obj.last_name = last_name.strip()
            obj.first_name = first_name.strip()
            obj.is_active = is_active
            self.s.flush()
            return obj
        except SQLAlchemyError as e:
            self._handle_error(e, "upsert_student")

    @log_op("enroll_student")
    def enroll(
        self, student_id: str, academic_level: str, program: str, academic_year: str
    ) -> EnrollmentORM:
        """Enroll the student for (level, year); an existing enrollment is returned as is."""
        self.get_required(student_id)
        try:
            obj = (
                self.s.query(EnrollmentORM)
                .filter_by(
                    student_id=student_id,
                    academic_level=academic_level,
                    academic_year=academic_year,
                )
                .one_or_none()
            )
            if obj is None:
                obj = EnrollmentORM(
                    student_id=student_id,
                    academic_level=academic_level,
                    program=program,
                    academic_year=academic_year,
                )
                self.s.add(obj)
                self.s.flush()
            return obj
        except SQLAlchemyError as e:
            self._handle_error(e, "enroll_student")

    @log_op("list_enrolled_students")
    def list_enrolled(self, academic_level: str, academic_year: str) -> list[StudentORM]:
        try:
            return (
                self.s.query(StudentORM)
                .join(EnrollmentORM)
                .filter(
                    EnrollmentORM.academic_level == academic_level,
                    EnrollmentORM.academic_year == academic_year,
                )
                .order_by(StudentORM.last_name, StudentORM.first_name, StudentORM.student_id)
                .all()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "list_enrolled_students")

    def is_enrolled(self, student_id: str, academic_level: str, academic_year: str) -> bool:
        return self.s.query(EnrollmentORM).filter_by(
            student_id=student_id, academic_level=academic_level, academic_year=academic_year
        ).first() is not None
