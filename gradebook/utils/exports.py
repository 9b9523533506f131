from __future__ import annotations

import io
import json
from decimal import Decimal
from typing import Any

import pandas as pd

from ..domain.models import ClassSummary, RankingRow
from ..infrastructure.models import FinalGradeORM, TeachingUnitORM

RANKING_COLUMNS = [
    "Rank",
    "StudentID",
    "LastName",
    "FirstName",
    "UnweightedAverage",
    "WeightedAverage",
    "Capitalization",
    "Decision",
    "Mention",
]


def _to_plain(val):
    if isinstance(val, Decimal):
        return float(val)
    if hasattr(val, "isoformat"):
        return val.isoformat()
    return val


def final_grade_payload(grade: FinalGradeORM, unit: TeachingUnitORM | None = None) -> dict[str, Any]:
    """JSON-serializable view of a final grade with its unit metadata, for the minutes."""
    unit = unit or grade.unit
    return {
        "student_id": grade.student_id,
        "academic_year": grade.academic_year,
        "unit": {
            "code": unit.code,
            "name": unit.name,
            "academic_level": unit.academic_level,
            "program": unit.program,
            "credits": unit.credits,
        },
        "grade": _to_plain(grade.grade),
        "capitalized": grade.capitalized,
        "mention": grade.mention,
        "computation_version": grade.computation_version,
        "computed_at": _to_plain(grade.computed_at),
    }


def make_json_final_grade(grade: FinalGradeORM) -> str:
    return json.dumps(final_grade_payload(grade), indent=2)


def ranking_dataframe(rows: list[RankingRow]) -> pd.DataFrame:
    records = [
        {
            "Rank": r.rank,
            "StudentID": r.student_id,
            "LastName": r.last_name,
            "FirstName": r.first_name,
            "UnweightedAverage": _to_plain(r.unweighted_average),
            "WeightedAverage": _to_plain(r.weighted_average),
            "Capitalization": _to_plain(r.capitalization_percentage),
            "Decision": r.decision,
            "Mention": r.mention,
        }
        for r in rows
    ]
    return pd.DataFrame(records, columns=RANKING_COLUMNS)


def make_xlsx_ranking_bytes(
    ranking_df: pd.DataFrame, summary: ClassSummary | None = None
) -> bytes:
    """Ranking sheet, plus a two-column summary sheet when a class summary is given."""
    if ranking_df is None:
        ranking_df = pd.DataFrame(columns=RANKING_COLUMNS)

    ranking_df = ranking_df.copy()
    for column in RANKING_COLUMNS:
        if column not in ranking_df.columns:
            ranking_df[column] = pd.NA

    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        ranking_df.to_excel(writer, index=False, sheet_name="Ranking")
        if summary is not None:
            summary_df = pd.DataFrame(
                [
                    ("Level", summary.academic_level),
                    ("Year", summary.academic_year),
                    ("Students", summary.count),
                    ("Mean", _to_plain(summary.mean)),
                    ("StdDev", _to_plain(summary.std_dev)),
                    ("Min", _to_plain(summary.minimum)),
                    ("Max", _to_plain(summary.maximum)),
                    ("PassRate", _to_plain(summary.pass_rate)),
                ],
                columns=["Metric", "Value"],
            )
            summary_df.to_excel(writer, index=False, sheet_name="Summary")
    return bio.getvalue()
