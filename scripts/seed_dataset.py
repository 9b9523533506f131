from __future__ import annotations

import argparse
import os
import sys
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from gradebook.application.api import compute_level_results
from gradebook.domain.services_deliberation import DeliberationService
from gradebook.domain.services_ledger import EvaluationLedger, InlineRecompute
from gradebook.domain.services_units import TeachingUnitService
from gradebook.infrastructure.config import DatabaseConfig
from gradebook.infrastructure.db import initialise_database, make_engine_and_session
from gradebook.infrastructure.logging import get_logger
from gradebook.infrastructure.models import Base
from gradebook.infrastructure.repositories import StudentRepo

logger = get_logger("scripts.seed_dataset")

LEVEL = "L2"
PROGRAM = "GL"
YEAR = "2023-2024"

UNITS: list[dict] = [
    {"code": "INF201", "name": "Advanced algorithms", "credits": 6},
    {"code": "INF202", "name": "Databases", "credits": 6},
    {"code": "INF203", "name": "Object-oriented programming", "credits": 4},
    {"code": "MAT201", "name": "Probability and statistics", "credits": 4},
]

COMPONENTS: dict[str, list[dict]] = {
    "INF201": [
        {"kind": "continuous_assessment", "weight_percentage": Decimal("40")},
        {"kind": "normal_session", "weight_percentage": Decimal("60")},
    ],
    "INF202": [
        {"kind": "continuous_assessment", "weight_percentage": Decimal("30")},
        {"kind": "practical", "weight_percentage": Decimal("20")},
        {"kind": "normal_session", "weight_percentage": Decimal("50")},
    ],
    "INF203": [
        {"kind": "project", "weight_percentage": Decimal("50")},
        {"kind": "normal_session", "weight_percentage": Decimal("50")},
    ],
    "MAT201": [
        {"kind": "continuous_assessment", "weight_percentage": Decimal("30")},
        {"kind": "normal_session", "weight_percentage": Decimal("70")},
    ],
}

STUDENTS: list[tuple[str, str, str]] = [
    ("GL2023001", "Mbarga", "Alice"),
    ("GL2023002", "Nkoulou", "Bruno"),
    ("GL2023003", "Ewane", "Carine"),
    ("GL2023004", "Fouda", "Daniel"),
    ("GL2023005", "Tchana", "Estelle"),
    ("GL2023006", "Abena", "Fabrice"),
]

# marks per student, in UNITS x COMPONENTS order
MARKS: dict[str, list[float]] = {
    "GL2023001": [15, 16, 14, 15, 13, 17, 16, 14, 15],
    "GL2023002": [12, 11, 10, 12, 9, 13, 12, 11, 10],
    "GL2023003": [8, 9, 11, 10, 12, 7, 8, 9, 6],
    "GL2023004": [14, 13, 15, 16, 14, 12, 13, 15, 14],
    "GL2023005": [6, 7, 9, 8, 10, 11, 9, 5, 7],
    "GL2023006": [10, 12, 12, 11, 13, 10, 11, 10, 12],
}


def seed_demo_level(session: Session, author: str = "seed") -> None:
    units = TeachingUnitService(session)
    for unit in UNITS:
        units.create_unit(
            {**unit, "academic_level": LEVEL, "program": PROGRAM, "academic_year": YEAR}
        )
        units.configure_components(unit["code"], COMPONENTS[unit["code"]])

    students = StudentRepo(session)
    for student_id, last_name, first_name in STUDENTS:
        students.upsert(student_id, last_name, first_name)
        students.enroll(student_id, LEVEL, PROGRAM, YEAR)

    ledger = EvaluationLedger(session, scheduler=InlineRecompute(session))
    component_ids = [
        c.id for unit in UNITS for c in units.components.list_for_unit(unit["code"])
    ]
    for student_id, marks in MARKS.items():
        for component_id, mark in zip(component_ids, marks, strict=True):
            entry = ledger.record_entry(
                student_id, component_id, mark, author, entry_date=date(2024, 1, 15)
            )
            ledger.set_status(entry.id, "final", author)

    DeliberationService(session).set_params(LEVEL, Decimal("75"), 1, updated_by=author)
    compute_level_results(session, LEVEL, YEAR)
    logger.info("Seeded %d students on %d units", len(STUDENTS), len(UNITS))


def main() -> None:
    parser = argparse.ArgumentParser(description=f"Seed the demo {LEVEL} {PROGRAM} {YEAR} level")

    parser.add_argument(
        "--backend", choices=["sqlite", "mysql"], default=os.environ.get("DB_BACKEND", "sqlite")
    )
    parser.add_argument("--sqlite-path", default=os.environ.get("DB_SQLITE_PATH", "./gradebook.db"))
    parser.add_argument("--mysql-host", default=os.environ.get("DB_MYSQL_HOST", "localhost"))
    parser.add_argument("--mysql-port", type=int, default=int(os.environ.get("DB_MYSQL_PORT", 3306)))
    parser.add_argument("--mysql-user", default=os.environ.get("DB_MYSQL_USER", "root"))
    parser.add_argument("--mysql-password", default=os.environ.get("DB_MYSQL_PASSWORD", ""))
    parser.add_argument(
        "--mysql-database", default=os.environ.get("DB_MYSQL_DATABASE", "gradebook")
    )
    parser.add_argument(
        "--reset", action="store_true", help="Drop every gradebook table before seeding"
    )
    args = parser.parse_args()

    cfg = DatabaseConfig(
        backend=args.backend,
        sqlite_path=args.sqlite_path,
        mysql_host=args.mysql_host,
        mysql_port=args.mysql_port,
        mysql_user=args.mysql_user,
        mysql_password=args.mysql_password,
        mysql_database=args.mysql_database,
    )
    engine, SessionLocal = make_engine_and_session(cfg.get_connection_url())
    if args.reset:
        Base.metadata.drop_all(engine)
    initialise_database(engine)

    with SessionLocal() as session:
        if StudentRepo(session).list_enrolled(LEVEL, YEAR):
            print(f"ERROR: {LEVEL} {YEAR} is already seeded (use --reset)", file=sys.stderr)
            sys.exit(1)
        seed_demo_level(session)
        session.commit()
    print("Seed completed.")


if __name__ == "__main__":
    main()
