"""
Settings for the gradebook engine, read from the environment.

Four sections, each with its own prefix:

* ``DB_``      where grades are stored (SQLite file or MySQL schema);
* ``LOG_``     overrides of the environment's logging profile;
* ``GRADING_`` how the engine computes (recompute mode, point scale, batches);
* ``APP_``     environment name and feature switches.

``get_settings()`` returns one cached ``Settings`` whose sections are built on
first access; tests call ``reset_settings()`` after touching the environment.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings
from sqlalchemy.engine import URL


class DatabaseConfig(BaseSettings):
    """
    Grade store location.

    Example:
        >>> DatabaseConfig(backend="sqlite", sqlite_path=":memory:").get_connection_url()
        'sqlite:///:memory:'
    """

    backend: Literal["sqlite", "mysql"] = Field("sqlite", description="Store backend")

    sqlite_path: str | None = Field("./gradebook.db", description="SQLite file, or :memory:")

    mysql_host: str | None = Field("localhost", description="MySQL host")
    mysql_port: int | None = Field(3306, ge=1, le=65535, description="MySQL port")
    mysql_user: str | None = Field("root", description="MySQL user")
    mysql_password: str | None = Field("", description="MySQL password")
    mysql_database: str | None = Field("gradebook", description="MySQL schema holding the grade tables")
    mysql_charset: str = Field("utf8mb4", description="Connection charset")

    pool_pre_ping: bool = Field(True, description="Check pooled connections before use")
    pool_recycle: int = Field(3600, ge=60, description="Seconds before a pooled connection is recycled")
    echo: bool = Field(False, description="Echo SQL statements")

    model_config = {"env_prefix": "DB_", "case_sensitive": False}

    @field_validator("sqlite_path")
    def sqlite_file_location(cls, v):
        """Create the parent directory and default the ``.db`` suffix."""
        if v and v != ":memory:":
            path = Path(v)
            path.parent.mkdir(parents=True, exist_ok=True)
            if not path.suffix:
                v = str(path.with_suffix(".db"))
        return v

    @model_validator(mode="after")
    def mysql_needs_host_user_and_schema(self):
        if self.backend == "mysql":
            missing = [
                name
                for name in ("mysql_host", "mysql_user", "mysql_database")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"MySQL backend requires: {', '.join(missing)}")
        return self

    def get_connection_url(self) -> str:
        """SQLAlchemy URL for the configured backend, password included."""
        if self.backend == "sqlite":
            url = URL.create("sqlite", database=self.sqlite_path)
        else:
            url = URL.create(
                "mysql+pymysql",
                username=self.mysql_user,
                password=self.mysql_password or None,
                host=self.mysql_host,
                port=self.mysql_port,
                database=self.mysql_database,
                query={"charset": self.mysql_charset},
            )
        return url.render_as_string(hide_password=False)

    def get_engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self.echo}
        if self.backend == "mysql":
            options.update(pool_pre_ping=self.pool_pre_ping, pool_recycle=self.pool_recycle)
        return options


class LoggingConfig(BaseSettings):
    """
    ``LOG_`` overrides applied on top of the environment's logging profile.

    Only the fields actually present in the environment are applied; see
    ``overrides()``.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Minimum level of gradebook records"
    )
    file_path: str | None = Field(None, description="Rotating log file")
    structured: bool = Field(True, description="JSON records instead of plain text")
    console_enabled: bool = Field(True, description="Write records to stdout")

    model_config = {"env_prefix": "LOG_", "case_sensitive": False}

    def overrides(self) -> dict[str, Any]:
        """``setup_logging`` keyword arguments for the explicitly set fields."""
        names = {
            "level": "level",
            "file_path": "log_file",
            "structured": "structured",
            "console_enabled": "enable_console",
        }
        return {names[f]: getattr(self, f) for f in self.model_fields_set if f in names}


class GradingConfig(BaseSettings):
    """
    Grade engine settings.

    ``recompute_mode`` decides whether ledger writes recompute the owning final
    grade immediately ("inline") or only queue the key ("deferred") for a later
    drain.

    Example:
        >>> GradingConfig(recompute_mode="deferred").recompute_mode
        'deferred'
    """

    recompute_mode: Literal["inline", "deferred"] = Field(
        "inline", description="How ledger writes trigger final grade recomputation"
    )
    default_point_scale: int = Field(
        20, ge=1, le=100, description="Point scale of a component configured without one"
    )
    max_batch_size: int = Field(
        2000, ge=1, description="Maximum number of rows accepted by one batch entry call"
    )

    model_config = {"env_prefix": "GRADING_", "case_sensitive": False}


class ApplicationConfig(BaseSettings):
    """Environment name and the switches of the tabular surfaces."""

    environment: Literal["development", "testing", "production"] = Field(
        "development", description="Deployment environment"
    )
    debug: bool = Field(False, description="Verbose logging")
    version: str = Field("0.1.0", description="Engine version reported in payloads")

    enable_xlsx_export: bool = Field(True, description="Allow the XLSX ranking export")
    enable_mark_import: bool = Field(True, description="Allow tabular mark import")

    model_config = {"env_prefix": "APP_", "case_sensitive": False}

    @model_validator(mode="after")
    def no_debug_in_production(self):
        if self.debug and self.environment == "production":
            raise ValueError("Debug mode cannot be enabled in production")
        return self


class Settings:
    """Lazily built configuration sections."""

    def __init__(self):
        self._app: ApplicationConfig | None = None
        self._database: DatabaseConfig | None = None
        self._logging: LoggingConfig | None = None
        self._grading: GradingConfig | None = None

    @property
    def app(self) -> ApplicationConfig:
        if self._app is None:
            self._app = ApplicationConfig()
        return self._app

    @property
    def database(self) -> DatabaseConfig:
        if self._database is None:
            self._database = DatabaseConfig()
        return self._database

    @property
    def logging(self) -> LoggingConfig:
        if self._logging is None:
            self._logging = LoggingConfig()
        return self._logging

    @property
    def grading(self) -> GradingConfig:
        if self._grading is None:
            self._grading = GradingConfig()
        return self._grading

    def get_environment_info(self) -> dict[str, Any]:
        """Summary of the active configuration, without credentials."""
        return {
            "environment": self.app.environment,
            "version": self.app.version,
            "debug": self.app.debug,
            "database_backend": self.database.backend,
            "logging_level": self.logging.level,
            "recompute_mode": self.grading.recompute_mode,
            "max_batch_size": self.grading.max_batch_size,
            "features": {
                "xlsx_export": self.app.enable_xlsx_export,
                "mark_import": self.app.enable_mark_import,
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


_SECTION_PREFIXES = {"app": "APP_", "database": "DB_", "logging": "LOG_", "grading": "GRADING_"}


def load_settings_from_file(file_path: str) -> Settings:
    """
    Export a JSON settings file into the environment and reload.

    Each top-level section maps onto its prefix, e.g.
    ``{"grading": {"recompute_mode": "deferred"}}`` sets
    ``GRADING_RECOMPUTE_MODE``. File values replace environment values.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not JSON
    """
    config_path = Path(file_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    with open(config_path) as f:
        config_data = json.load(f)

    for section, values in config_data.items():
        if isinstance(values, dict):
            prefix = _SECTION_PREFIXES.get(section.lower(), f"{section.upper()}_")
            for key, value in values.items():
                os.environ[f"{prefix}{key.upper()}"] = str(value)

    get_settings.cache_clear()
    return get_settings()


def override_settings(**kwargs) -> Settings:
    """
    Set environment variables (names case-insensitive) and reload.

    Example:
        >>> override_settings(grading_recompute_mode="deferred").grading.recompute_mode
        'deferred'
    """
    for key, value in kwargs.items():
        os.environ[key.upper()] = str(value)

    get_settings.cache_clear()
    return get_settings()


def reset_settings() -> None:
    get_settings.cache_clear()
