import os

os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date, datetime
from decimal import Decimal

import pytest

from gradebook.domain.services import mention_for_grade
from gradebook.domain.services_units import TeachingUnitService
from gradebook.infrastructure.config import reset_settings
from gradebook.infrastructure.db import make_engine_and_session
from gradebook.infrastructure.models import Base, FinalGradeORM, StudentRecapORM
from gradebook.infrastructure.repositories import StudentRepo

LEVEL = "L2"
YEAR = "2023-2024"


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def session():
    engine, SessionLocal = make_engine_and_session("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with SessionLocal() as s:
        yield s
    engine.dispose()


@pytest.fixture
def make_student(session):
    def _make(student_id, last_name="Doe", first_name="Jane", level=LEVEL, year=YEAR):
        repo = StudentRepo(session)
        student = repo.upsert(student_id, last_name, first_name)
        repo.enroll(student_id, level, "GL", year)
        return student

    return _make


@pytest.fixture
def make_unit(session):
    def _make(code, credits=6, components=None, level=LEVEL, year=YEAR, name=None):
        service = TeachingUnitService(session)
        unit = service.create_unit(
            {
                "code": code,
                "name": name or f"Unit {code}",
                "academic_level": level,
                "program": "GL",
                "credits": credits,
                "academic_year": year,
            }
        )
        if components is None:
            components = [("continuous_assessment", 30), ("normal_session", 70)]
        if components:
            service.configure_components(
                code,
                [{"kind": kind, "weight_percentage": weight} for kind, weight in components],
            )
        return unit

    return _make


@pytest.fixture
def put_grade(session):
    """Store a final grade directly, bypassing the ledger."""

    def _put(student_id, unit_code, grade, year=YEAR):
        value = Decimal(str(grade))
        row = FinalGradeORM(
            student_id=student_id,
            unit_code=unit_code,
            academic_year=year,
            grade=value,
            capitalized=value >= 10,
            mention=mention_for_grade(value),
            computation_version=1,
            computed_at=datetime.utcnow(),
        )
        session.add(row)
        session.flush()
        return row

    return _put


@pytest.fixture
def put_recap(session):
    """Store a recap row directly, for ranking tests."""

    def _put(student_id, unweighted, weighted=None, level=LEVEL, year=YEAR):
        row = StudentRecapORM(
            student_id=student_id,
            academic_level=level,
            academic_year=year,
            unweighted_average=None if unweighted is None else Decimal(str(unweighted)),
            weighted_average=None if weighted is None else Decimal(str(weighted)),
            capitalization_percentage=Decimal("0"),
            computed_at=datetime.utcnow(),
        )
        session.add(row)
        session.flush()
        return row

    return _put


@pytest.fixture
def entry_date():
    return date(2024, 1, 15)
