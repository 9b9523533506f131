"""
Custom exception classes for the gradebook engine.

Provides structured error handling with user-friendly messages and proper
error categorization: validation, referential, consistency, empty input,
concurrency and storage failures.
"""

from __future__ import annotations

from typing import Any


class GradebookError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        user_message: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.user_message = user_message or self._get_default_user_message()

    def _get_default_user_message(self) -> str:
        """Provide a user-friendly version of the error message."""
        return "An unexpected error occurred. Please try again."

    def __str__(self) -> str:
        return f"{self.__class__.__name__}: {self.message}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(GradebookError):
    """Raised when input validation fails."""

    def __init__(
        self, field: str, message: str, value: Any = None, details: dict[str, Any] | None = None
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=f"Validation failed for field '{field}': {message}",
            details=details or {"field": field, "value": value},
            user_message=f"Invalid {field.replace('_', ' ')}: {message}",
        )

    def _get_default_user_message(self) -> str:
        return f"Please check your input for {self.field.replace('_', ' ')} and try again."


class MultipleValidationError(GradebookError):
    """Raised when multiple validation errors occur."""

    def __init__(self, errors: list[ValidationError]):
        self.validation_errors = errors
        messages = [f"{e.field}: {e.message}" for e in errors]
        super().__init__(
            message=f"Multiple validation errors: {'; '.join(messages)}",
            details={
                "errors": [
                    {"field": e.field, "message": e.message, "value": e.value} for e in errors
                ]
            },
            user_message="Please correct the following errors and try again.",
        )


class InvalidRangeError(ValidationError):
    """Raised when a mark falls outside [0, point scale] of its component."""

    def __init__(self, mark: Any, point_scale: Any):
        self.point_scale = point_scale
        super().__init__(
            field="mark",
            message=f"must be between 0 and {point_scale}, got {mark}",
            value=mark,
            details={"mark": str(mark), "point_scale": str(point_scale)},
        )


class InvalidStatusTransitionError(ValidationError):
    """Raised when an entry status change is not allowed by the status machine."""

    def __init__(self, current: str, requested: str, entry_id: int | None = None):
        self.current = current
        self.requested = requested
        self.entry_id = entry_id
        super().__init__(
            field="status",
            message=f"cannot move from '{current}' to '{requested}'",
            value=requested,
            details={"entry_id": entry_id, "current": current, "requested": requested},
        )


# ---------------------------------------------------------------------------
# Referential
# ---------------------------------------------------------------------------


class NotFoundError(GradebookError):
    """Raised when a referenced row does not exist."""

    entity = "record"

    def __init__(self, key: Any):
        self.key = key
        super().__init__(
            message=f"{self.entity.capitalize()} '{key}' not found",
            details={"entity": self.entity, "key": key},
        )

    def _get_default_user_message(self) -> str:
        return f"The selected {self.entity} could not be found. Please refresh and try again."


class UnknownStudentError(NotFoundError):
    entity = "student"


class UnknownTeachingUnitError(NotFoundError):
    entity = "teaching unit"


class UnknownComponentError(NotFoundError):
    entity = "evaluation component"


class UnknownEntryError(NotFoundError):
    entity = "evaluation entry"


class UnknownRecapError(NotFoundError):
    entity = "student recap"


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


class ConsistencyError(GradebookError):
    """Raised when a configuration write would break a cross-row invariant."""

    def __init__(self, message: str, rule: str | None = None, details: dict[str, Any] | None = None):
        self.rule = rule
        super().__init__(
            message=message,
            details=details or {"rule": rule},
            user_message="This operation cannot be completed due to business rules.",
        )


class InvalidComponentWeightsError(ConsistencyError):
    """Raised when a unit's component weights do not sum to 100."""

    def __init__(self, unit_code: str, total: Any):
        self.unit_code = unit_code
        self.total = total
        super().__init__(
            message=f"Component weights for unit {unit_code} must total 100%, got {total}%",
            rule="component_weights_total",
            details={"unit_code": unit_code, "total": str(total)},
        )


class MissingDeliberationParamsError(ConsistencyError):
    """Raised when no deliberation parameters are configured for a level."""

    def __init__(self, academic_level: str):
        self.academic_level = academic_level
        super().__init__(
            message=f"No deliberation parameters configured for level {academic_level}",
            rule="deliberation_params_required",
            details={"academic_level": academic_level},
        )


class ArchivedTeachingUnitError(ConsistencyError):
    """Raised when mutating an archived teaching unit."""

    def __init__(self, unit_code: str):
        self.unit_code = unit_code
        super().__init__(
            message=f"Teaching unit {unit_code} is archived and cannot be modified",
            rule="archived_unit_read_only",
            details={"unit_code": unit_code},
        )


class TeachingUnitInUseError(ConsistencyError):
    """Raised when deleting a unit (or component) that already carries entries."""

    def __init__(self, unit_code: str, what: str = "teaching unit"):
        self.unit_code = unit_code
        super().__init__(
            message=f"Cannot delete {what} of {unit_code}: evaluation entries exist",
            rule="unit_has_evaluations",
            details={"unit_code": unit_code},
        )


# ---------------------------------------------------------------------------
# Empty input for recomputations
# ---------------------------------------------------------------------------


class EmptyInputError(GradebookError):
    """Raised when a recompute finds nothing to aggregate."""

    def _get_default_user_message(self) -> str:
        return "There is no data to compute yet."


class NoTeachingUnitsForLevelError(EmptyInputError):
    def __init__(self, academic_level: str, academic_year: str):
        super().__init__(
            message=f"No teaching units configured for {academic_level} {academic_year}",
            details={"academic_level": academic_level, "academic_year": academic_year},
        )


class NoStudentsForLevelError(EmptyInputError):
    def __init__(self, academic_level: str, academic_year: str):
        super().__init__(
            message=f"No student recaps found for {academic_level} {academic_year}",
            details={"academic_level": academic_level, "academic_year": academic_year},
        )


class NoGradesForUnitError(EmptyInputError):
    def __init__(self, unit_code: str, academic_year: str):
        super().__init__(
            message=f"No final grades found for unit {unit_code} in {academic_year}",
            details={"unit_code": unit_code, "academic_year": academic_year},
        )


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class ConcurrentModificationError(GradebookError):
    """Raised when an update carries a stale version of an evaluation entry."""

    def __init__(self, entry_id: int | None, expected: int | None, actual: int | None):
        self.entry_id = entry_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            message=(
                f"Evaluation entry {entry_id} was modified concurrently "
                f"(expected version {expected}, stored version {actual})"
            ),
            details={"entry_id": entry_id, "expected": expected, "actual": actual},
            user_message="This mark was changed by someone else. Reload it and try again.",
        )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class DatabaseError(GradebookError):
    """Raised when database operations fail."""

    def __init__(self, message: str, operation: str, details: dict[str, Any] | None = None):
        self.operation = operation
        super().__init__(
            message=f"Database error during {operation}: {message}",
            details=details or {"operation": operation},
            user_message="A database error occurred. Please try again in a moment.",
        )


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, operation="connection", details=details)
        self.user_message = (
            "Unable to connect to the database. Please check your connection and try again."
        )


class IntegrityError(DatabaseError):
    """Raised when database integrity constraints are violated."""

    def __init__(
        self,
        message: str,
        constraint: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.constraint = constraint
        super().__init__(
            message=message,
            operation="integrity_check",
            details=details or {"constraint": constraint},
        )
        self.user_message = self._integrity_user_message()

    def _integrity_user_message(self) -> str:
        if self.constraint:
            if "unique" in self.constraint.lower():
                return "This item already exists (unique constraint)."
            elif "foreign" in self.constraint.lower():
                return "Referenced item no longer exists. Please refresh and try again."
        return "Data integrity error (constraint violated). Please check your input."


class ConfigurationError(GradebookError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            details=details or {"config_key": config_key},
            user_message="Configuration error. Please check your settings.",
        )


class ImportFileError(GradebookError):
    """Raised when a mark import file cannot be read or is malformed."""

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.file_path = file_path
        super().__init__(
            message=message,
            details=details or {"file_path": file_path},
            user_message="Import failed. Please check your file and try again.",
        )


def handle_database_error(e: Exception, operation: str = "database operation") -> DatabaseError:
    """
    Convert generic database exceptions to appropriate custom exceptions.

    Args:
        e: The original exception
        operation: Description of the operation that failed

    Returns:
        Appropriate DatabaseError subclass

    Example:
        >>> try:
        ...     session.commit()
        >>> except Exception as e:
        ...     raise handle_database_error(e, "commit transaction")
    """
    error_msg = str(e).lower()

    if "connection" in error_msg or "timeout" in error_msg:
        return DatabaseConnectionError(str(e))
    elif "unique constraint" in error_msg or "duplicate" in error_msg:
        return IntegrityError(str(e), constraint="unique")
    elif "foreign key" in error_msg or "foreign_key" in error_msg:
        return IntegrityError(str(e), constraint="foreign_key")
    elif "check constraint" in error_msg:
        return IntegrityError(str(e), constraint="check")
    else:
        return DatabaseError(str(e), operation)


def create_user_friendly_error_message(error: Exception) -> str:
    """
    Create a user-friendly error message from any exception.

    Example:
        >>> error = ValidationError("mark", "cannot be negative")
        >>> create_user_friendly_error_message(error)
        'Invalid mark: cannot be negative'
    """
    if isinstance(error, GradebookError):
        return error.user_message

    error_type = type(error).__name__
    messages = {
        "ValueError": "Invalid input provided. Please check your data and try again.",
        "KeyError": "Required information is missing. Please check your input.",
        "TypeError": "Incorrect data type provided. Please check your input format.",
    }
    return messages.get(
        error_type, "An unexpected error occurred. Please try again or contact support."
    )


def log_error_details(error: Exception, context: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Create structured error details for logging.

    Example:
        >>> error = DatabaseError("Connection failed", "connect")
        >>> details = log_error_details(error, {"student_id": "ETU001"})
        >>> details["error_type"]
        'DatabaseError'
    """
    details = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context or {},
    }

    if isinstance(error, GradebookError):
        details.update({"user_message": error.user_message, "error_details": error.details})

    return details
