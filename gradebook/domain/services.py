"""
Pure grading arithmetic.

Everything here works on plain values (Decimals, dataclasses from
``domain.models``) so the rules can be exercised without a database. The
service classes in ``services_*.py`` feed these helpers from repositories and
persist the results.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal

import numpy as np

from ..infrastructure.exceptions import InvalidStatusTransitionError
from .models import (
    COUNTING_STATUSES,
    Criterion,
    FinalGradeComputation,
    GradeContribution,
    RankingRow,
    RecapComputation,
    StatisticsComputation,
    UnitResult,
)

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")
TWENTY = Decimal("20")
CAPITALIZATION_THRESHOLD = Decimal("10")
WEIGHT_TOLERANCE = Decimal("0.01")

# (lower bound, mention), first match wins
GRADE_MENTIONS: tuple[tuple[Decimal, str], ...] = (
    (Decimal("18"), "excellent"),
    (Decimal("16"), "very-good"),
    (Decimal("14"), "good"),
    (Decimal("12"), "fairly-good"),
    (Decimal("10"), "pass"),
    (Decimal("5"), "fail"),
)
AVERAGE_MENTIONS: tuple[tuple[Decimal, str], ...] = (
    (Decimal("16"), "very-good"),
    (Decimal("14"), "good"),
    (Decimal("12"), "fairly-good"),
    (Decimal("10"), "pass"),
)

STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"provisional", "final", "cancelled", "retake"}),
    "provisional": frozenset({"provisional", "final", "cancelled", "retake"}),
    "final": frozenset({"cancelled", "retake"}),
    "cancelled": frozenset(),
    "retake": frozenset({"final", "cancelled"}),
}


def to_decimal(value: Decimal | float | int | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_grade(value: Decimal | float | int | str) -> Decimal:
    """Two decimals, halves rounded away from zero."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def normalize_mark(mark: Decimal | float | int, point_scale: int | Decimal) -> Decimal:
    """Rescale a raw mark to /20 (0 when the scale is 0)."""
    scale = to_decimal(point_scale)
    if scale == 0:
        return Decimal("0")
    return to_decimal(mark) * TWENTY / scale


def is_counting(status: str | None) -> bool:
    return status in COUNTING_STATUSES


def mention_for_grade(grade: Decimal) -> str:
    for lower, mention in GRADE_MENTIONS:
        if grade >= lower:
            return mention
    return "eliminated"


def overall_mention(average: Decimal | None) -> str | None:
    if average is None:
        return None
    for lower, mention in AVERAGE_MENTIONS:
        if average >= lower:
            return mention
    return "fail"


def check_status_transition(current: str, requested: str, entry_id: int | None = None) -> None:
    if requested not in STATUS_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransitionError(current, requested, entry_id)


def check_component_weights(weights: Iterable[Decimal]) -> tuple[bool, Decimal]:
    """
    Return (valid, total) for a unit's component weights.

    An empty set is valid: the invariant only binds once a component exists.
    """
    values = [to_decimal(w) for w in weights]
    total = sum(values, Decimal("0"))
    if not values:
        return True, total
    return abs(total - HUNDRED) <= WEIGHT_TOLERANCE, total


# ---------------------------------------------------------------------------
# Final grade
# ---------------------------------------------------------------------------


def grade_contribution(
    component_id: int,
    kind: str,
    status: str,
    mark: Decimal,
    point_scale: int,
    weight_percentage: Decimal,
) -> GradeContribution:
    normalized = normalize_mark(mark, point_scale)
    weight = to_decimal(weight_percentage)
    return GradeContribution(
        component_id=component_id,
        kind=kind,
        status=status,
        mark=to_decimal(mark),
        point_scale=point_scale,
        normalized_mark=normalized,
        weight_percentage=weight,
        contribution=normalized * weight / HUNDRED,
    )


def compute_final_grade(contributions: Sequence[GradeContribution]) -> FinalGradeComputation | None:
    """
    Weighted sum of the counting contributions, or None when nothing counts.

    Only the total is rounded; individual contributions keep full precision.
    """
    counting = [c for c in contributions if is_counting(c.status)]
    if not counting:
        return None
    grade = round_grade(sum((c.contribution for c in counting), Decimal("0")))
    return FinalGradeComputation(
        grade=grade,
        capitalized=grade >= CAPITALIZATION_THRESHOLD,
        mention=mention_for_grade(grade),
        contributions=counting,
    )


# ---------------------------------------------------------------------------
# Recap
# ---------------------------------------------------------------------------


def compute_recap(units: Sequence[UnitResult]) -> RecapComputation:
    """
    Aggregate the per-unit results of one student for a level.

    Units without a final grade are "not yet evaluated": they count towards
    the unit total and the credit total, never towards the averages.
    """
    present = [u for u in units if u.final_grade is not None]
    capitalized = [u for u in units if u.final_grade is not None and u.capitalized]
    total_credits = sum(u.credits for u in units)
    obtained_credits = sum(u.credits for u in capitalized)

    unweighted = weighted = None
    if present:
        unweighted = round_grade(
            sum((u.final_grade for u in present), Decimal("0")) / len(present)
        )
        present_credits = sum(u.credits for u in present)
        if present_credits:
            weighted = round_grade(
                sum((u.final_grade * u.credits for u in present), Decimal("0"))
                / present_credits
            )

    capitalization = Decimal("0")
    if total_credits:
        capitalization = round_grade(Decimal(obtained_credits) * HUNDRED / total_credits)

    if units and len(capitalized) == len(units):
        decision = "admitted"
    elif units and len(present) == len(units):
        decision = "failed"
    else:
        decision = None

    return RecapComputation(
        unweighted_average=unweighted,
        weighted_average=weighted,
        capitalization_percentage=capitalization,
        capitalized_units=len(capitalized),
        total_units=len(units),
        evaluated_units=len(present),
        obtained_credits=obtained_credits,
        total_credits=total_credits,
        overall_mention=overall_mention(unweighted),
        decision=decision,
        subject_to_deliberation=decision == "failed",
        details=list(units),
    )


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def _ranking_key(row: RankingRow):
    # descending averages with absent values last, then ascending student id
    return (
        row.unweighted_average is None,
        -(row.unweighted_average or Decimal("0")),
        row.weighted_average is None,
        -(row.weighted_average or Decimal("0")),
        row.student_id,
    )


def rank_rows(rows: Iterable[RankingRow]) -> list[RankingRow]:
    """Order rows and assign distinct 1-based ranks (ties broken by student id)."""
    ordered = sorted(rows, key=_ranking_key)
    for position, row in enumerate(ordered, start=1):
        row.rank = position
    return ordered


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def compute_statistics(grades: Sequence[Decimal]) -> StatisticsComputation:
    """
    Descriptive statistics of a non-empty grade distribution.

    Population standard deviation; quartiles by linear interpolation at rank
    (p/100)(N-1).
    """
    if not grades:
        raise ValueError("compute_statistics needs at least one grade")

    values = [to_decimal(g) for g in grades]
    arr = np.array([float(v) for v in values], dtype=float)
    q1, median, q3 = np.percentile(arr, [25, 50, 75], method="linear")
    count = len(values)
    pass_count = sum(1 for v in values if v >= CAPITALIZATION_THRESHOLD)

    return StatisticsComputation(
        count=count,
        mean=round_grade(sum(values, Decimal("0")) / count),
        std_dev=round_grade(float(np.std(arr, ddof=0))),
        minimum=round_grade(min(values)),
        maximum=round_grade(max(values)),
        q1=round_grade(float(q1)),
        median=round_grade(float(median)),
        q3=round_grade(float(q3)),
        pass_count=pass_count,
        fail_count=count - pass_count,
        pass_rate=round_grade(Decimal(pass_count) * HUNDRED / count),
    )


# ---------------------------------------------------------------------------
# Deliberation
# ---------------------------------------------------------------------------


def evaluate_criteria(
    capitalization_percentage: Decimal,
    total_units: int,
    capitalized_units: int,
    min_capitalization: Decimal,
    max_non_capitalized_units: int,
) -> tuple[bool, list[Criterion], str | None]:
    """Return (eligible, criteria, reason) for the deliberation thresholds."""
    non_capitalized = total_units - capitalized_units
    criteria = [
        Criterion(
            name="capitalization_percentage",
            observed=to_decimal(capitalization_percentage),
            threshold=to_decimal(min_capitalization),
            passed=to_decimal(capitalization_percentage) >= to_decimal(min_capitalization),
        ),
        Criterion(
            name="non_capitalized_units",
            observed=Decimal(non_capitalized),
            threshold=Decimal(max_non_capitalized_units),
            passed=non_capitalized <= max_non_capitalized_units,
        ),
    ]
    failed = [c.name for c in criteria if not c.passed]
    reason = f"Criteria not met: {', '.join(failed)}" if failed else None
    return not failed, criteria, reason
