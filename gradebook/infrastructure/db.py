"""
Database connection and session management.

Builds the SQLAlchemy engine and session factory from the centralized
configuration and makes sure SQLite enforces the foreign keys the grade
tables rely on.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import DatabaseConfig, get_settings
from .logging import get_logger
from .models import Base

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_database_engine(config: DatabaseConfig | None = None) -> Engine:
    """
    Create SQLAlchemy engine with proper configuration.

    Example:
        >>> engine = create_database_engine(DatabaseConfig(sqlite_path=":memory:"))
    """
    if config is None:
        config = get_settings().database

    connection_url = config.get_connection_url()
    engine_options = config.get_engine_options()

    logger.info(f"Creating database engine for {config.backend} backend")
    logger.debug(f"Connection URL: {connection_url.split('@')[0]}@***")

    try:
        engine = create_engine(connection_url, **engine_options)
    except Exception as e:
        logger.error(f"Failed to create database engine: {str(e)}")
        raise

    _enable_sqlite_foreign_keys(engine)
    logger.info("Database engine created successfully")
    return engine


def create_session_factory(engine: Engine | None = None) -> sessionmaker:
    """
    Create SQLAlchemy session factory.

    Example:
        >>> SessionLocal = create_session_factory()
        >>> with SessionLocal() as session:
        ...     pass
    """
    if engine is None:
        engine = create_database_engine()

    return sessionmaker(
        bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True
    )


def make_engine_and_session(connection_url: str | None = None) -> tuple[Engine, sessionmaker]:
    """
    Create engine and session factory, either from an explicit URL or from settings.

    Example:
        >>> engine, SessionLocal = make_engine_and_session("sqlite:///:memory:")
    """
    if connection_url:
        engine = create_engine(connection_url, echo=False, future=True, pool_pre_ping=True)
        _enable_sqlite_foreign_keys(engine)
    else:
        engine = create_database_engine()
    return engine, create_session_factory(engine)


def initialise_database(engine: Engine) -> bool:
    """
    Ensure all ORM tables exist.

    Returns:
        True if every table already existed before this call, False if at least one
        table needed to be created.
    """
    existing_tables = set(inspect(engine).get_table_names())
    expected_tables = [table.name for table in Base.metadata.sorted_tables]
    already_exists = all(table in existing_tables for table in expected_tables)
    Base.metadata.create_all(engine)
    if not already_exists:
        logger.info("Created gradebook schema (%d tables)", len(expected_tables))
    return already_exists


def is_database_configured() -> bool:
    """Check if the database configuration is usable."""
    try:
        get_settings().database.get_connection_url()
        return True
    except Exception as e:
        logger.warning(f"Database configuration invalid: {str(e)}")
        return False
