"""
Application API layer with error handling and validation.

Module-level functions taking a SQLAlchemy ``Session``; they wire the domain
services together, log each operation and turn unexpected failures into
``GradebookError`` with a user-facing message. Transactions are left to the
caller (see ``UnitOfWork``).
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

import pandas as pd
from sqlalchemy.orm import Session

from ..domain.models import BatchResult, ClassSummary, ConfigurationReport, EligibilityVerdict
from ..domain.schemas import TeachingUnitInput, validate_input
from ..domain.services_deliberation import DeliberationService
from ..domain.services_grades import FinalGradeService
from ..domain.services_ledger import DeferredRecompute, EvaluationLedger, RecomputeScheduler
from ..domain.services_ranking import RankingService
from ..domain.services_recap import RecapService
from ..domain.services_statistics import StatisticsService
from ..domain.services_units import TeachingUnitService
from ..infrastructure.config import get_settings
from ..infrastructure.exceptions import (
    ConfigurationError,
    GradebookError,
    ValidationError,
    create_user_friendly_error_message,
    log_error_details,
)
from ..infrastructure.logging import get_logger, log_operation
from ..infrastructure.models import (
    EvaluationComponentORM,
    EvaluationEntryORM,
    FinalGradeORM,
    StudentRecapORM,
    TeachingUnitORM,
    UEStatisticsORM,
)
from ..infrastructure.repositories import FinalGradeRepo, StudentRepo, TeachingUnitRepo
from ..utils.exports import make_xlsx_ranking_bytes, ranking_dataframe

logger = get_logger(__name__)


def _reraise(e: Exception, message: str, context: dict[str, Any]) -> None:
    """Log ``e`` and raise it as a GradebookError (custom errors pass through unchanged)."""
    error_details = log_error_details(e, context)
    logger.error(message, extra=error_details)
    if isinstance(e, GradebookError):
        raise e
    raise GradebookError(
        f"{message}: {str(e)}",
        details=error_details,
        user_message=create_user_friendly_error_message(e),
    ) from e


def _is_missing(value: Any) -> bool:
    if value is None or value is pd.NA:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


# ---------------------------------------------------------------------------
# Teaching-unit configuration
# ---------------------------------------------------------------------------


@log_operation("create_teaching_unit")
def create_teaching_unit(
    session: Session,
    code: str,
    name: str,
    academic_level: str,
    program: str,
    credits: int,
    academic_year: str,
    description: str | None = None,
) -> TeachingUnitORM:
    """
    Create a teaching unit with validation.

    Raises:
        ValidationError: If input data is invalid
        IntegrityError: If the code (or name for the level) already exists

    Example:
        >>> unit = create_teaching_unit(
        ...     session, "INF201", "Algorithms", "L2", "GL", 6, "2023-2024"
        ... )
    """
    data = {
        "code": code,
        "name": name,
        "academic_level": academic_level,
        "program": program,
        "credits": credits,
        "academic_year": academic_year,
        "description": description,
    }
    validation_result = validate_input(TeachingUnitInput, data)
    if not validation_result.success:
        error_msg = "; ".join([f"{e.field}: {e.message}" for e in validation_result.errors])
        logger.warning(f"Teaching unit validation failed: {error_msg}")
        raise ValidationError("unit_data", error_msg)

    try:
        return TeachingUnitService(session).create_unit(validation_result.data or data)
    except Exception as e:
        _reraise(e, f"Failed to create teaching unit '{code}'", {"unit_code": code})


@log_operation("configure_unit_components")
def configure_unit_components(
    session: Session, unit_code: str, components: Iterable[Mapping[str, Any]]
) -> list[EvaluationComponentORM]:
    """
    Replace the evaluation components of a unit.

    Example:
        >>> configure_unit_components(session, "INF201", [
        ...     {"kind": "continuous_assessment", "weight_percentage": 30},
        ...     {"kind": "normal_session", "weight_percentage": 70},
        ... ])
    """
    try:
        return TeachingUnitService(session).configure_components(unit_code, components)
    except Exception as e:
        _reraise(e, f"Failed to configure components of {unit_code}", {"unit_code": unit_code})


@log_operation("validate_unit_configuration")
def validate_unit_configuration(session: Session, unit_code: str) -> ConfigurationReport:
    try:
        report = TeachingUnitService(session).validate_configuration(unit_code)
        if not report.is_valid:
            logger.warning("Unit %s configuration invalid: %s", unit_code, "; ".join(report.errors))
        return report
    except Exception as e:
        _reraise(e, f"Failed to validate configuration of {unit_code}", {"unit_code": unit_code})


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@log_operation("record_mark")
def record_mark(
    session: Session,
    student_id: str,
    component_id: int,
    mark: Any,
    author: str,
    entry_date: date | None = None,
    comment: str | None = None,
    mode: str = "manual",
    scheduler: RecomputeScheduler | None = None,
) -> EvaluationEntryORM:
    """
    Record (or re-record) a student's raw mark on a component.

    Raises:
        ValidationError / InvalidRangeError: If the mark is invalid
        UnknownStudentError / UnknownComponentError: If references don't resolve

    Example:
        >>> entry = record_mark(session, "GL2023001", 1, 14.5, author="prof01")
        >>> entry.status
        'provisional'
    """
    try:
        ledger = EvaluationLedger(session, scheduler=scheduler)
        return ledger.record_entry(
            student_id,
            component_id,
            mark,
            author,
            entry_date=entry_date,
            comment=comment,
            mode=mode,
        )
    except Exception as e:
        _reraise(
            e,
            "Failed to record mark",
            {"student_id": student_id, "component_id": component_id, "mark": str(mark)},
        )


@log_operation("correct_mark")
def correct_mark(
    session: Session,
    entry_id: int,
    patch: Mapping[str, Any],
    expected_version: int | None = None,
    scheduler: RecomputeScheduler | None = None,
) -> EvaluationEntryORM:
    try:
        ledger = EvaluationLedger(session, scheduler=scheduler)
        return ledger.update_entry(entry_id, patch, expected_version=expected_version)
    except Exception as e:
        _reraise(e, f"Failed to correct entry {entry_id}", {"entry_id": entry_id})


@log_operation("change_entry_status")
def change_entry_status(
    session: Session,
    entry_id: int,
    new_status: str,
    actor: str,
    expected_version: int | None = None,
    scheduler: RecomputeScheduler | None = None,
) -> EvaluationEntryORM:
    """
    Move an entry through the status machine.

    Example:
        >>> change_entry_status(session, entry.id, "final", actor="prof01")
    """
    try:
        ledger = EvaluationLedger(session, scheduler=scheduler)
        return ledger.set_status(entry_id, new_status, actor, expected_version=expected_version)
    except Exception as e:
        _reraise(
            e,
            f"Failed to change status of entry {entry_id}",
            {"entry_id": entry_id, "new_status": new_status},
        )


@log_operation("record_marks_batch")
def record_marks_batch(
    session: Session,
    component_id: int,
    entry_date: date,
    author: str,
    rows: Iterable[Mapping[str, Any]],
    mode: str = "manual",
    scheduler: RecomputeScheduler | None = None,
) -> BatchResult:
    try:
        ledger = EvaluationLedger(session, scheduler=scheduler)
        result = ledger.record_batch(component_id, entry_date, author, rows, mode=mode)
        logger.info(
            "Batch on component %s: %d recorded, %d rejected",
            component_id,
            result.success,
            result.failed,
        )
        return result
    except Exception as e:
        _reraise(e, "Failed to record batch", {"component_id": component_id})


@log_operation("import_evaluations")
def import_evaluations(
    session: Session,
    component_id: int,
    dataframe: pd.DataFrame,
    author: str,
    entry_date: date | None = None,
    scheduler: RecomputeScheduler | None = None,
) -> BatchResult:
    """
    Import marks for one component from a DataFrame.

    Expected columns: ``student_id``, ``mark`` and optionally ``comment``.
    Rows without a student id are skipped; entries are recorded with mode
    ``import``.
    """
    if not get_settings().app.enable_mark_import:
        raise ConfigurationError("Mark import is disabled", config_key="APP_ENABLE_MARK_IMPORT")

    if dataframe is None or dataframe.empty:
        logger.info("No rows provided for import; skipping")
        return BatchResult()

    columns = {str(c).strip().lower(): c for c in dataframe.columns}
    missing = [c for c in ("student_id", "mark") if c not in columns]
    if missing:
        raise ValidationError(
            "columns", f"Missing required columns: {', '.join(missing)}", list(dataframe.columns)
        )

    rows = []
    for record in dataframe.to_dict(orient="records"):
        student_id = record.get(columns["student_id"])
        if _is_missing(student_id):
            continue
        comment = record.get(columns["comment"]) if "comment" in columns else None
        mark = record.get(columns["mark"])
        rows.append(
            {
                "student_id": str(student_id).strip(),
                "mark": None if _is_missing(mark) else str(mark).strip(),
                "comment": None if _is_missing(comment) else str(comment),
            }
        )

    return record_marks_batch(
        session,
        component_id,
        entry_date or date.today(),
        author,
        rows,
        mode="import",
        scheduler=scheduler,
    )


@log_operation("run_pending_recomputes")
def run_pending_recomputes(session: Session, scheduler: DeferredRecompute) -> list[FinalGradeORM]:
    """Drain a deferred scheduler; keys that fail stay queued for the next run."""
    try:
        results = scheduler.drain(session)
        logger.info("Recomputed %d final grades", len(results))
        return results
    except Exception as e:
        _reraise(e, "Failed to run pending recomputes", {"pending": len(scheduler)})


# ---------------------------------------------------------------------------
# Grades, recaps, ranking
# ---------------------------------------------------------------------------


@log_operation("recompute_final_grade")
def recompute_final_grade(
    session: Session, student_id: str, unit_code: str, academic_year: str | None = None
) -> FinalGradeORM | None:
    try:
        return FinalGradeService(session).recompute_final_grade(student_id, unit_code, academic_year)
    except Exception as e:
        _reraise(
            e,
            "Failed to recompute final grade",
            {"student_id": student_id, "unit_code": unit_code},
        )


def get_final_grade(
    session: Session, student_id: str, unit_code: str, academic_year: str
) -> FinalGradeORM | None:
    """Read-only accessor used by the minutes generator."""
    return FinalGradeService(session).get_final_grade(student_id, unit_code, academic_year)


@log_operation("recompute_level")
def recompute_level(
    session: Session, academic_level: str, academic_year: str
) -> list[StudentRecapORM]:
    """Refresh every final grade of the level's units, then every enrolled student's recap."""
    try:
        grades = FinalGradeService(session)
        for unit in TeachingUnitRepo(session).list_for_level(academic_level, academic_year):
            grades.recompute_unit(unit.code, academic_year)
        return RecapService(session).recompute_level(academic_level, academic_year)
    except Exception as e:
        _reraise(
            e,
            f"Failed to recompute {academic_level} {academic_year}",
            {"academic_level": academic_level, "academic_year": academic_year},
        )


@log_operation("compute_level_results")
def compute_level_results(
    session: Session, academic_level: str, academic_year: str
) -> pd.DataFrame:
    """
    Results board of a level: ranking columns plus one grade column per unit.

    Example:
        >>> df = compute_level_results(session, "L2", "2023-2024")
        >>> df[["Rank", "StudentID", "UnweightedAverage"]].head()
    """
    recompute_level(session, academic_level, academic_year)
    try:
        rows = RankingService(session).rank_level(academic_level, academic_year)
        df = ranking_dataframe(rows)

        grade_repo = FinalGradeRepo(session)
        units = TeachingUnitRepo(session).list_for_level(academic_level, academic_year)
        for unit in units:
            by_student = {
                g.student_id: float(g.grade)
                for g in grade_repo.list_for_unit(unit.code, academic_year)
            }
            df[unit.code] = [by_student.get(sid) for sid in df["StudentID"]]

        logger.info(f"Built results board with {len(df)} students and {len(units)} units")
        return df
    except Exception as e:
        _reraise(
            e,
            "Failed to build level results",
            {"academic_level": academic_level, "academic_year": academic_year},
        )


@log_operation("get_class_summary")
def get_class_summary(session: Session, academic_level: str, academic_year: str) -> ClassSummary:
    return RankingService(session).class_summary(academic_level, academic_year)


@log_operation("export_ranking_xlsx")
def export_ranking_xlsx(session: Session, academic_level: str, academic_year: str) -> bytes:
    if not get_settings().app.enable_xlsx_export:
        raise ConfigurationError("XLSX export is disabled", config_key="APP_ENABLE_XLSX_EXPORT")
    try:
        ranking = RankingService(session)
        rows = ranking.rank_level(academic_level, academic_year)
        summary = ranking.class_summary(academic_level, academic_year)
        return make_xlsx_ranking_bytes(ranking_dataframe(rows), summary)
    except Exception as e:
        _reraise(
            e,
            "Failed to export ranking",
            {"academic_level": academic_level, "academic_year": academic_year},
        )


@log_operation("compute_unit_statistics")
def compute_unit_statistics(
    session: Session, unit_code: str, academic_year: str | None = None
) -> UEStatisticsORM:
    try:
        return StatisticsService(session).compute_ue_statistics(unit_code, academic_year)
    except Exception as e:
        _reraise(e, f"Failed to compute statistics of {unit_code}", {"unit_code": unit_code})


# ---------------------------------------------------------------------------
# Deliberation
# ---------------------------------------------------------------------------


@log_operation("evaluate_eligibility")
def evaluate_eligibility(
    session: Session,
    student_id: str,
    academic_level: str,
    academic_year: str,
    params: Mapping[str, Any] | None = None,
) -> EligibilityVerdict:
    try:
        return DeliberationService(session).evaluate_eligibility(
            student_id, academic_level, academic_year, params
        )
    except Exception as e:
        _reraise(
            e,
            "Failed to evaluate eligibility",
            {"student_id": student_id, "academic_level": academic_level},
        )


@log_operation("evaluate_level_eligibility")
def evaluate_level_eligibility(
    session: Session, academic_level: str, academic_year: str
) -> list[EligibilityVerdict]:
    """Verdicts for every student enrolled in (level, year), in name order."""
    service = DeliberationService(session)
    return [
        service.evaluate_eligibility(s.student_id, academic_level, academic_year)
        for s in StudentRepo(session).list_enrolled(academic_level, academic_year)
    ]


@log_operation("record_deliberation_decision")
def record_deliberation_decision(
    session: Session,
    student_id: str,
    academic_level: str,
    academic_year: str,
    decision: str,
    actor: str,
) -> StudentRecapORM:
    try:
        return RecapService(session).record_deliberation(
            student_id, academic_level, academic_year, decision, actor
        )
    except Exception as e:
        _reraise(e, "Failed to record deliberation", {"student_id": student_id})
