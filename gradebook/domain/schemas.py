"""
Pydantic schemas for input validation across the gradebook engine.

Every write entering the engine (unit configuration, mark submissions,
deliberation parameters and decisions) is validated here before any
repository is touched.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..infrastructure.config import get_settings
from ..infrastructure.exceptions import MultipleValidationError, ValidationError
from .models import AcademicLevel, ComponentKind, Decision, EntryMode

YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")

DEFAULT_COMPONENT_NAMES: dict[str, str] = {
    "continuous_assessment": "Continuous assessment",
    "normal_session": "Normal session exam",
    "retake_session": "Retake session exam",
    "practical": "Practical work",
    "personal_work": "Personal work",
    "project": "Project",
}


class BaseValidationSchema(BaseModel):
    """Base schema with common validation utilities."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    @field_validator("*", mode="before")
    def sanitize_strings(cls, v):
        """Strip whitespace and drop null bytes and control characters."""
        if isinstance(v, str):
            return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]", "", v.strip())
        return v


def _check_academic_year(v: str) -> str:
    match = YEAR_PATTERN.match(v)
    if not match:
        raise ValueError("Academic year must look like YYYY-YYYY")
    start, end = (int(g) for g in match.groups())
    if end != start + 1:
        raise ValueError("Academic year must span two consecutive years")
    return v


class TeachingUnitInput(BaseValidationSchema):
    """Validation schema for creating a teaching unit."""

    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=200)
    academic_level: AcademicLevel
    program: str = Field(..., min_length=1, max_length=10)
    credits: int = Field(..., ge=1, le=30)
    academic_year: str
    description: str | None = Field(None, max_length=2000)

    @field_validator("code")
    def validate_code(cls, v):
        if not re.fullmatch(r"[A-Za-z0-9_-]+", v):
            raise ValueError("Unit code may only contain letters, digits, '-' and '_'")
        return v.upper()

    @field_validator("academic_year")
    def validate_year(cls, v):
        return _check_academic_year(v)


class TeachingUnitUpdate(BaseValidationSchema):
    """Partial update of a teaching unit; archiving goes through its own operation."""

    name: str | None = Field(None, min_length=1, max_length=200)
    academic_level: AcademicLevel | None = None
    program: str | None = Field(None, min_length=1, max_length=10)
    credits: int | None = Field(None, ge=1, le=30)
    academic_year: str | None = None
    status: str | None = None
    description: str | None = Field(None, max_length=2000)

    @field_validator("academic_year")
    def validate_year(cls, v):
        return _check_academic_year(v) if v is not None else v

    @field_validator("status")
    def validate_status(cls, v):
        if v is not None and v not in ("active", "inactive"):
            raise ValueError("Status can only be set to 'active' or 'inactive'")
        return v


def _default_point_scale() -> int:
    return get_settings().grading.default_point_scale


class ComponentInput(BaseValidationSchema):
    """One evaluation component of a teaching unit."""

    kind: ComponentKind
    name: str | None = Field(None, max_length=100)
    weight_percentage: Decimal = Field(..., ge=0, le=100, decimal_places=2)
    point_scale: int = Field(default_factory=_default_point_scale, ge=1, le=100)
    position: int = Field(0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name"):
            kind = data.get("kind")
            if kind in DEFAULT_COMPONENT_NAMES:
                data = {**data, "name": DEFAULT_COMPONENT_NAMES[kind]}
        return data


class ComponentUpdate(BaseValidationSchema):
    name: str | None = Field(None, min_length=1, max_length=100)
    weight_percentage: Decimal | None = Field(None, ge=0, le=100, decimal_places=2)
    point_scale: int | None = Field(None, ge=1, le=100)
    position: int | None = Field(None, ge=0)


class EvaluationEntryInput(BaseValidationSchema):
    """
    A raw mark submission for one (student, component).

    Only the sign is checked here; the upper bound depends on the component's
    point scale and is enforced by the ledger.
    """

    student_id: str = Field(..., min_length=1, max_length=20)
    component_id: int = Field(..., gt=0)
    mark: Decimal = Field(..., ge=0, decimal_places=2)
    entry_date: date
    author: str = Field(..., min_length=1, max_length=20)
    comment: str | None = Field(None, max_length=2000)
    mode: EntryMode = "manual"

    @field_validator("comment")
    def empty_comment_is_none(cls, v):
        return v or None


class EntryPatch(BaseValidationSchema):
    """Fields of an existing entry that may be corrected."""

    mark: Decimal | None = Field(None, ge=0, decimal_places=2)
    entry_date: date | None = None
    author: str | None = Field(None, min_length=1, max_length=20)
    comment: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def at_least_one_field(self):
        if not self.model_fields_set:
            raise ValueError("Patch must change at least one field")
        return self


class BatchEntryRow(BaseValidationSchema):
    student_id: str = Field(..., min_length=1, max_length=20)
    mark: Decimal = Field(..., ge=0, decimal_places=2)
    comment: str | None = Field(None, max_length=2000)


class DeliberationParamsInput(BaseValidationSchema):
    academic_level: AcademicLevel
    min_capitalization: Decimal = Field(..., ge=0, le=100, decimal_places=2)
    max_non_capitalized_units: int = Field(..., ge=0)


class DeliberationDecisionInput(BaseValidationSchema):
    decision: Decision
    actor: str = Field(..., min_length=1, max_length=20)


class ValidationErrorDetail(BaseModel):
    """Schema for validation error details."""

    field: str
    message: str
    value: Any = None


class ValidationResponse(BaseModel):
    """Schema for validation responses."""

    success: bool
    errors: list[ValidationErrorDetail] = []
    data: dict[str, Any] | None = None


def validate_input(schema_class: type[BaseModel], data: dict[str, Any]) -> ValidationResponse:
    """
    Centralized validation function that returns structured validation results.

    Example:
        >>> result = validate_input(BatchEntryRow, {"student_id": "GL2023001", "mark": 14})
        >>> result.success
        True
    """
    try:
        validated = schema_class(**data)
        return ValidationResponse(success=True, data=validated.model_dump())
    except PydanticValidationError as e:
        errors = [
            ValidationErrorDetail(
                field=".".join(str(x) for x in error["loc"]) or "general",
                message=error["msg"],
                value=error.get("input"),
            )
            for error in e.errors()
        ]
        return ValidationResponse(success=False, errors=errors)


M = TypeVar("M", bound=BaseModel)


def parse_input(schema_class: type[M], data: dict[str, Any]) -> M:
    """
    Validate ``data`` against ``schema_class`` or raise the engine's own error.

    A single failing field raises ``ValidationError``; several raise
    ``MultipleValidationError``.
    """
    try:
        return schema_class(**data)
    except PydanticValidationError as e:
        errors = [
            ValidationError(
                ".".join(str(x) for x in error["loc"]) or "general",
                error["msg"],
                error.get("input"),
            )
            for error in e.errors()
        ]
        if len(errors) == 1:
            raise errors[0] from e
        raise MultipleValidationError(errors) from e
