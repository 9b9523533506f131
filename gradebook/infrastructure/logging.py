"""
Logging for the gradebook engine.

Every record emitted under the ``gradebook`` namespace can carry the grading
scope it was produced in (student, unit, level and year, entry, actor).
The scope is held by a single ``ContextFilter``; ``log_operation`` fills it
from the decorated call's own arguments, so a failure inside a recompute is
logged together with the student and unit it was computing.
"""

from __future__ import annotations

import inspect
import json
import logging
import logging.config
import os
import time
from collections.abc import Callable
from datetime import UTC, datetime
from functools import wraps
from pathlib import Path
from typing import Any, ParamSpec, TypeVar

P = ParamSpec("P")
R = TypeVar("R")

ROOT_LOGGER = "gradebook"

# Scope attributes, in the order they are rendered
CONTEXT_FIELDS = (
    "operation",
    "academic_level",
    "academic_year",
    "unit_code",
    "student_id",
    "entry_id",
    "actor",
)

# Argument names that carry a scope field under another name
ARGUMENT_ALIASES = {"code": "unit_code", "author": "actor"}


def _scope_of(record: logging.LogRecord) -> dict[str, Any]:
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; the grading scope is flattened into it."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        payload.update(_scope_of(record))
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            payload["duration_ms"] = duration
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(payload, ensure_ascii=False, default=str)


class ContextFilter(logging.Filter):
    """
    Stamps the current grading scope onto records.

    Values passed explicitly through ``extra=`` win over the ambient scope.
    Every record also gets a ``scope`` string (``L2/2023-2024 INF201
    GL2023001``) for the plain-text format.
    """

    def __init__(self):
        super().__init__()
        self.context: dict[str, Any] = {}

    def set_context(self, **kwargs: Any) -> None:
        unknown = set(kwargs) - set(CONTEXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown logging context fields: {', '.join(sorted(unknown))}")
        self.context.update(kwargs)

    def clear_context(self) -> None:
        self.context.clear()

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context.items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        scope = _scope_of(record)
        parts = []
        if "academic_level" in scope or "academic_year" in scope:
            parts.append(f"{scope.get('academic_level', '?')}/{scope.get('academic_year', '?')}")
        for field in ("unit_code", "student_id"):
            if field in scope:
                parts.append(str(scope[field]))
        if "entry_id" in scope:
            parts.append(f"entry#{scope['entry_id']}")
        record.scope = " ".join(parts) or "-"
        return True


context_filter = ContextFilter()


def set_context(**kwargs: Any) -> None:
    """Add scope fields to every following record, until cleared."""
    context_filter.set_context(**kwargs)


def clear_context() -> None:
    context_filter.clear_context()


class LogContext:
    """
    Scope fields for the duration of a ``with`` block.

    Example:
        >>> with LogContext(student_id="GL2023001", unit_code="INF201"):
        ...     get_logger("grades").info("recomputing")
    """

    def __init__(self, **kwargs: Any):
        self.context = {k: v for k, v in kwargs.items() if v is not None}
        self.previous_context: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self.previous_context = dict(context_filter.context)
        context_filter.set_context(**self.context)
        return self

    def __exit__(self, *exc: object) -> None:
        context_filter.context = self.previous_context


def get_logger(name: str) -> logging.Logger:
    """
    Logger under the ``gradebook`` namespace.

    Example:
        >>> get_logger("ledger").name
        'gradebook.ledger'
    """
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def _call_scope(signature: inspect.Signature, args: tuple, kwargs: dict) -> dict[str, Any]:
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return {}
    scope = {}
    for name, value in bound.arguments.items():
        field = ARGUMENT_ALIASES.get(name, name)
        if field in CONTEXT_FIELDS and isinstance(value, (str, int)):
            scope[field] = value
    return scope


def _timed(
    operation: str,
    get_log: Callable[[Callable[..., Any]], logging.Logger],
    level: int,
    bind_arguments: bool,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        signature = inspect.signature(func)

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            log = get_log(func)
            scope = _call_scope(signature, args, kwargs) if bind_arguments else {}
            with LogContext(operation=operation, **scope):
                log.log(level, "%s started", operation)
                start = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    elapsed = round((time.perf_counter() - start) * 1000, 2)
                    log.error(
                        "%s failed after %.2f ms: %s",
                        operation,
                        elapsed,
                        e,
                        exc_info=True,
                        extra={"duration_ms": elapsed},
                    )
                    raise
                elapsed = round((time.perf_counter() - start) * 1000, 2)
                log.log(level, "%s done", operation, extra={"duration_ms": elapsed})
                return result

        return wrapper

    return decorator


def log_operation(
    operation: str, logger: logging.Logger | None = None
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Log start, end and failure of an engine operation.

    Arguments named like a scope field (``student_id``, ``unit_code``,
    ``academic_year``...) or aliased to one (``code``, ``author``) are bound
    into the log context for the duration of the call.
    """
    return _timed(
        operation,
        lambda func: logger or get_logger(func.__module__),
        logging.INFO,
        bind_arguments=True,
    )


def log_database_operation(operation: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Debug-level timing of a repository call; failures are logged as errors."""
    return _timed(
        f"db_{operation}",
        lambda func: get_logger("database"),
        logging.DEBUG,
        bind_arguments=False,
    )


# level, log file, structured output, console output
ENVIRONMENT_PROFILES: dict[str, tuple[str, str | None, bool, bool]] = {
    "development": ("DEBUG", "./logs/development.log", False, True),
    "test": ("WARNING", None, False, False),
    "production": ("INFO", "./logs/production.log", True, False),
}


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    structured: bool = True,
    enable_console: bool = True,
) -> None:
    """
    Configure the ``gradebook`` logger tree through ``dictConfig``.

    Args:
        level: Minimum log level
        log_file: Rotating log file (10MB x 5); no file when None
        structured: JSON records instead of the plain scope-prefixed format
        enable_console: Also write to stdout
    """
    handlers: dict[str, dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": "structured" if structured else "plain",
            "filters": ["scope"],
            "stream": "ext://sys.stdout",
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "structured",
            "filters": ["scope"],
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }
    names = list(handlers)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {"()": StructuredFormatter},
                "plain": {
                    "format": "%(asctime)s %(levelname)-7s %(name)s [%(scope)s] %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "filters": {"scope": {"()": lambda: context_filter}},
            "handlers": handlers,
            "loggers": {
                ROOT_LOGGER: {"level": level, "handlers": names, "propagate": False},
                "sqlalchemy.engine": {"level": "WARNING", "handlers": names, "propagate": False},
                "alembic": {"level": "INFO", "handlers": names, "propagate": False},
            },
            "root": {"level": level, "handlers": names},
        }
    )


def auto_configure_logging() -> None:
    """
    Apply the profile named by ``ENVIRONMENT`` (development by default),
    then any ``LOG_`` variable set explicitly, e.g. ``LOG_LEVEL=INFO``.
    """
    from .config import LoggingConfig

    env = os.getenv("ENVIRONMENT", "development").lower()
    level, log_file, structured, console = ENVIRONMENT_PROFILES.get(
        env, ENVIRONMENT_PROFILES["development"]
    )
    options: dict[str, Any] = {
        "level": level,
        "log_file": log_file,
        "structured": structured,
        "enable_console": console,
    }
    options.update(LoggingConfig().overrides())
    setup_logging(**options)
    get_logger(__name__).info("Logging configured for %s environment", env)


if not logging.getLogger().handlers:
    auto_configure_logging()
