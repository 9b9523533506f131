from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal, get_args

AcademicLevel = Literal["L1", "L2", "L3", "M1", "M2", "D1", "D2", "D3"]
UnitStatus = Literal["active", "inactive", "archived"]
ComponentKind = Literal[
    "continuous_assessment",
    "normal_session",
    "retake_session",
    "practical",
    "personal_work",
    "project",
]
EntryStatus = Literal["pending", "provisional", "final", "cancelled", "retake"]
EntryMode = Literal["manual", "import", "system", "compensation"]
Mention = Literal[
    "excellent", "very-good", "good", "fairly-good", "pass", "fail", "eliminated"
]
Decision = Literal["admitted", "failed", "deferred"]

ACADEMIC_LEVELS: tuple[str, ...] = get_args(AcademicLevel)
UNIT_STATUSES: tuple[str, ...] = get_args(UnitStatus)
COMPONENT_KINDS: tuple[str, ...] = get_args(ComponentKind)
ENTRY_STATUSES: tuple[str, ...] = get_args(EntryStatus)
ENTRY_MODES: tuple[str, ...] = get_args(EntryMode)
MENTIONS: tuple[str, ...] = get_args(Mention)
DECISIONS: tuple[str, ...] = get_args(Decision)

# Entries in these statuses feed the final grade
COUNTING_STATUSES: frozenset[str] = frozenset({"final", "retake"})


@dataclass(slots=True)
class ComponentWeight:
    kind: str
    weight_percentage: Decimal


@dataclass(slots=True)
class GradeContribution:
    component_id: int
    kind: str
    status: str
    mark: Decimal
    point_scale: int
    normalized_mark: Decimal
    weight_percentage: Decimal
    contribution: Decimal


@dataclass(slots=True)
class FinalGradeComputation:
    grade: Decimal
    capitalized: bool
    mention: str
    contributions: list[GradeContribution] = field(default_factory=list)


@dataclass(slots=True)
class UnitResult:
    unit_code: str
    unit_name: str
    credits: int
    final_grade: Decimal | None  # None = not yet evaluated
    capitalized: bool
    mention: str | None = None


@dataclass(slots=True)
class RecapComputation:
    unweighted_average: Decimal | None
    weighted_average: Decimal | None
    capitalization_percentage: Decimal
    capitalized_units: int
    total_units: int
    evaluated_units: int
    obtained_credits: int
    total_credits: int
    overall_mention: str | None
    decision: str | None
    subject_to_deliberation: bool
    details: list[UnitResult] = field(default_factory=list)


@dataclass(slots=True)
class RankingRow:
    rank: int
    student_id: str
    last_name: str | None
    first_name: str | None
    unweighted_average: Decimal | None
    weighted_average: Decimal | None
    capitalization_percentage: Decimal | None
    decision: str | None
    mention: str | None


@dataclass(slots=True)
class StatisticsComputation:
    count: int
    mean: Decimal
    std_dev: Decimal
    minimum: Decimal
    maximum: Decimal
    q1: Decimal
    median: Decimal
    q3: Decimal
    pass_count: int
    fail_count: int
    pass_rate: Decimal


@dataclass(slots=True)
class ClassSummary:
    academic_level: str
    academic_year: str
    count: int
    mean: Decimal | None
    std_dev: Decimal | None
    minimum: Decimal | None
    maximum: Decimal | None
    pass_rate: Decimal | None


@dataclass(slots=True)
class Criterion:
    name: str
    observed: Decimal
    threshold: Decimal
    passed: bool


@dataclass(slots=True)
class EligibilityVerdict:
    student_id: str
    academic_level: str
    academic_year: str
    eligible: bool
    reason: str | None
    capitalization_percentage: Decimal
    non_capitalized_units: int
    total_units: int
    criteria: list[Criterion] = field(default_factory=list)

    @property
    def failed_criteria(self) -> list[Criterion]:
        return [c for c in self.criteria if not c.passed]


@dataclass(slots=True)
class ConfigurationReport:
    unit_code: str
    is_valid: bool
    total_percentage: Decimal
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class BatchResult:
    success: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
