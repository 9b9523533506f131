from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path

import pandas as pd

from gradebook.application.api import import_evaluations
from gradebook.infrastructure.db import make_engine_and_session
from gradebook.infrastructure.exceptions import (
    GradebookError,
    ImportFileError,
    UnknownComponentError,
)
from gradebook.infrastructure.repositories import ComponentRepo
from gradebook.infrastructure.uow import UnitOfWork


def read_marks_file(path: Path) -> pd.DataFrame:
    """Load a CSV or XLSX marks sheet (columns: student_id, mark, optional comment)."""
    if not path.exists():
        raise ImportFileError(f"File not found: {path}", file_path=str(path))

    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            return pd.read_csv(path, dtype={"student_id": str})
        if suffix in (".xlsx", ".xlsm"):
            return pd.read_excel(path, engine="openpyxl", dtype={"student_id": str})
    except (ValueError, OSError) as e:
        raise ImportFileError(f"Cannot read {path}: {e}", file_path=str(path)) from e
    raise ImportFileError(f"Unsupported file format: {suffix}", file_path=str(path))


def main() -> None:
    parser = argparse.ArgumentParser(description="Import marks for one evaluation component")
    parser.add_argument("file", type=Path, help="CSV or XLSX file")
    parser.add_argument("--unit", required=True, help="Teaching unit code, e.g. INF201")
    parser.add_argument("--kind", required=True, help="Component kind, e.g. normal_session")
    parser.add_argument("--author", required=True, help="Identifier of the person importing")
    parser.add_argument(
        "--date", type=date.fromisoformat, default=None, help="Entry date (YYYY-MM-DD)"
    )
    parser.add_argument("--database-url", default=None, help="Overrides the DB_* settings")
    args = parser.parse_args()

    _, SessionLocal = make_engine_and_session(args.database_url)
    uow = UnitOfWork(SessionLocal)

    try:
        df = read_marks_file(args.file)
        with uow.begin() as session:
            component = ComponentRepo(session).get_by_kind(args.unit.upper(), args.kind)
            if component is None:
                raise UnknownComponentError(f"{args.unit}/{args.kind}")
            result = import_evaluations(session, component.id, df, args.author, args.date)
    except GradebookError as e:
        print(f"ERROR: {e.user_message} ({e.message})", file=sys.stderr)
        sys.exit(1)

    print(f"Imported {result.success} marks, {result.failed} rejected.")
    for error in result.errors:
        print(f" - row {error['row']} ({error['student_id']}): {error['error']}")


if __name__ == "__main__":
    main()
