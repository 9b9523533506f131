from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..domain.models import (
    ACADEMIC_LEVELS,
    COMPONENT_KINDS,
    DECISIONS,
    ENTRY_MODES,
    ENTRY_STATUSES,
    MENTIONS,
    UNIT_STATUSES,
)


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    pass


class StudentORM(Base):
    """Local mirror of the identity service's student records."""

    __tablename__ = "students"
    student_id: Mapped[str] = mapped_column(String(20), primary_key=True)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )

    enrollments: Mapped[list[EnrollmentORM]] = relationship(
        back_populates="student", cascade="all, delete"
    )


class EnrollmentORM(Base):
    __tablename__ = "enrollments"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False, index=True
    )
    academic_level: Mapped[str] = mapped_column(String(5), nullable=False)
    program: Mapped[str] = mapped_column(String(10), nullable=False)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "student_id", "academic_level", "academic_year", name="uq_enrollment_student_level_year"
        ),
        CheckConstraint(_in("academic_level", ACADEMIC_LEVELS), name="ck_enrollment_level"),
    )

    student: Mapped[StudentORM] = relationship(back_populates="enrollments")


class TeachingUnitORM(Base):
    __tablename__ = "teaching_units"
    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    academic_level: Mapped[str] = mapped_column(String(5), nullable=False)
    program: Mapped[str] = mapped_column(String(10), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    status: Mapped[str] = mapped_column(String(10), default="active", nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "name", "academic_level", "program", "academic_year", name="uq_unit_name_level"
        ),
        CheckConstraint("credits > 0 AND credits <= 30", name="ck_unit_credits"),
        CheckConstraint(_in("academic_level", ACADEMIC_LEVELS), name="ck_unit_level"),
        CheckConstraint(_in("status", UNIT_STATUSES), name="ck_unit_status"),
    )

    components: Mapped[list[EvaluationComponentORM]] = relationship(
        back_populates="unit",
        cascade="all, delete-orphan",
        order_by="EvaluationComponentORM.position",
    )


class EvaluationComponentORM(Base):
    __tablename__ = "evaluation_components"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    unit_code: Mapped[str] = mapped_column(
        ForeignKey("teaching_units.code", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    weight_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    point_scale: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("unit_code", "kind", name="uq_unit_component_kind"),
        CheckConstraint(
            "weight_percentage >= 0 AND weight_percentage <= 100", name="ck_component_weight"
        ),
        CheckConstraint("point_scale > 0 AND point_scale <= 100", name="ck_component_points"),
        CheckConstraint(_in("kind", COMPONENT_KINDS), name="ck_component_kind"),
    )

    unit: Mapped[TeachingUnitORM] = relationship(back_populates="components")
    entries: Mapped[list[EvaluationEntryORM]] = relationship(back_populates="component")


class EvaluationEntryORM(Base):
    __tablename__ = "evaluation_entries"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.student_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    component_id: Mapped[int] = mapped_column(
        ForeignKey("evaluation_components.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    mark: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    author: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="provisional", nullable=False, index=True)
    mode: Mapped[str] = mapped_column(String(20), default="manual", nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("student_id", "component_id", name="uq_entry_student_component"),
        CheckConstraint("mark >= 0", name="ck_entry_mark"),
        CheckConstraint(_in("status", ENTRY_STATUSES), name="ck_entry_status"),
        CheckConstraint(_in("mode", ENTRY_MODES), name="ck_entry_mode"),
    )

    # Optimistic concurrency: every UPDATE bumps and checks `version`
    __mapper_args__ = {"version_id_col": version}

    component: Mapped[EvaluationComponentORM] = relationship(back_populates="entries")
    status_changes: Mapped[list[EntryStatusChangeORM]] = relationship(
        back_populates="entry", cascade="all, delete", order_by="EntryStatusChangeORM.id"
    )

    @property
    def normalized_mark(self) -> Decimal:
        """Mark rescaled to /20; read-only, derived from the component's point scale."""
        from ..domain.services import normalize_mark

        return normalize_mark(self.mark, self.component.point_scale)


class EntryStatusChangeORM(Base):
    __tablename__ = "entry_status_changes"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        ForeignKey("evaluation_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    previous_status: Mapped[str] = mapped_column(String(20), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )

    entry: Mapped[EvaluationEntryORM] = relationship(back_populates="status_changes")


class FinalGradeORM(Base):
    __tablename__ = "final_grades"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False, index=True
    )
    unit_code: Mapped[str] = mapped_column(
        ForeignKey("teaching_units.code", ondelete="CASCADE"), nullable=False, index=True
    )
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    grade: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    capitalized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    mention: Mapped[str] = mapped_column(String(16), nullable=False)
    computation_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("student_id", "unit_code", "academic_year", name="uq_final_grade_key"),
        CheckConstraint("grade >= 0 AND grade <= 20", name="ck_final_grade_range"),
        CheckConstraint(_in("mention", MENTIONS), name="ck_final_grade_mention"),
    )

    unit: Mapped[TeachingUnitORM] = relationship()


class StudentRecapORM(Base):
    __tablename__ = "student_recaps"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False, index=True
    )
    academic_level: Mapped[str] = mapped_column(String(5), nullable=False)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    unweighted_average: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    weighted_average: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    capitalization_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    capitalized_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    obtained_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_subject_to_deliberation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_eligible_for_deliberation: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    has_been_deliberated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    decision: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    overall_mention: Mapped[str | None] = mapped_column(String(16), nullable=True)
    deliberated_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    deliberated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "student_id", "academic_level", "academic_year", name="uq_recap_student_level_year"
        ),
        CheckConstraint(
            "(unweighted_average IS NULL OR (unweighted_average BETWEEN 0 AND 20)) "
            "AND (weighted_average IS NULL OR (weighted_average BETWEEN 0 AND 20)) "
            "AND (capitalization_percentage BETWEEN 0 AND 100)",
            name="ck_recap_ranges",
        ),
        CheckConstraint(
            "decision IS NULL OR " + _in("decision", DECISIONS), name="ck_recap_decision"
        ),
    )


class UEStatisticsORM(Base):
    __tablename__ = "ue_statistics"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    unit_code: Mapped[str] = mapped_column(
        ForeignKey("teaching_units.code", ondelete="CASCADE"), nullable=False, index=True
    )
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    mean: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    std_dev: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    minimum: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    maximum: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    q1: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    median: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    q3: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    pass_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fail_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pass_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (UniqueConstraint("unit_code", "academic_year", name="uq_statistics_key"),)


class DeliberationParamsORM(Base):
    __tablename__ = "deliberation_params"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    academic_level: Mapped[str] = mapped_column(String(5), unique=True, nullable=False)
    min_capitalization: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    max_non_capitalized_units: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "min_capitalization >= 0 AND min_capitalization <= 100",
            name="ck_params_min_capitalization",
        ),
        CheckConstraint("max_non_capitalized_units >= 0", name="ck_params_max_non_capitalized"),
        CheckConstraint(_in("academic_level", ACADEMIC_LEVELS), name="ck_params_level"),
    )
