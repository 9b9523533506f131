"""
End-to-end tests of the application API on the seeded demo level.
"""

import io
import json
from decimal import Decimal
from unittest.mock import patch

import pandas as pd
import pytest

from gradebook.application.api import (
    change_entry_status,
    compute_level_results,
    compute_unit_statistics,
    configure_unit_components,
    correct_mark,
    create_teaching_unit,
    evaluate_eligibility,
    evaluate_level_eligibility,
    export_ranking_xlsx,
    get_class_summary,
    get_final_grade,
    import_evaluations,
    record_deliberation_decision,
    record_mark,
    run_pending_recomputes,
    validate_unit_configuration,
)
from gradebook.domain.services_ledger import DeferredRecompute
from gradebook.domain.services_statistics import StatisticsService
from gradebook.infrastructure.config import reset_settings
from gradebook.infrastructure.exceptions import (
    ConfigurationError,
    GradebookError,
    ImportFileError,
    UnknownStudentError,
    ValidationError,
)
from gradebook.infrastructure.repositories import ComponentRepo, EntryRepo
from gradebook.utils.exports import RANKING_COLUMNS, final_grade_payload, make_json_final_grade
from scripts.import_marks import read_marks_file
from scripts.seed_dataset import seed_demo_level

LEVEL, YEAR = "L2", "2023-2024"


@pytest.fixture
def seeded(session):
    seed_demo_level(session)
    return session


class TestResultsBoard:
    def test_ranking_of_the_demo_level(self, seeded):
        df = compute_level_results(seeded, LEVEL, YEAR)

        assert list(df.columns) == RANKING_COLUMNS + ["INF201", "INF202", "INF203", "MAT201"]
        assert list(df["StudentID"]) == [
            "GL2023001",
            "GL2023004",
            "GL2023006",
            "GL2023002",
            "GL2023003",
            "GL2023005",
        ]
        assert list(df["Rank"]) == [1, 2, 3, 4, 5, 6]
        top = df.iloc[0]
        assert top["UnweightedAverage"] == pytest.approx(15.13)
        assert top["INF201"] == pytest.approx(15.6)
        assert top["Decision"] == "admitted"
        assert top["Mention"] == "good"

    def test_decisions_follow_capitalization(self, seeded):
        df = compute_level_results(seeded, LEVEL, YEAR).set_index("StudentID")
        assert df.loc["GL2023002", "Decision"] == "failed"
        assert df.loc["GL2023002", "Capitalization"] == pytest.approx(80.0)
        assert df.loc["GL2023003", "Capitalization"] == pytest.approx(30.0)

    def test_class_summary(self, seeded):
        summary = get_class_summary(seeded, LEVEL, YEAR)
        assert summary.count == 6
        assert summary.maximum == Decimal("15.13")
        assert summary.minimum == Decimal("8.08")

    def test_xlsx_export(self, seeded):
        data = export_ranking_xlsx(seeded, LEVEL, YEAR)

        assert data[:2] == b"PK"
        sheets = pd.read_excel(io.BytesIO(data), sheet_name=None, engine="openpyxl")
        assert set(sheets) == {"Ranking", "Summary"}
        assert list(sheets["Ranking"].columns) == RANKING_COLUMNS
        assert len(sheets["Ranking"]) == 6

    def test_xlsx_export_can_be_disabled(self, seeded, monkeypatch):
        monkeypatch.setenv("APP_ENABLE_XLSX_EXPORT", "false")
        reset_settings()
        with pytest.raises(ConfigurationError):
            export_ranking_xlsx(seeded, LEVEL, YEAR)


class TestGradesAndStatistics:
    def test_final_grade_payload(self, seeded):
        grade = get_final_grade(seeded, "GL2023001", "INF201", YEAR)
        payload = final_grade_payload(grade)

        assert payload["grade"] == pytest.approx(15.6)
        assert payload["unit"]["code"] == "INF201"
        assert payload["unit"]["credits"] == 6
        assert payload["mention"] == "good"
        assert json.loads(make_json_final_grade(grade))["student_id"] == "GL2023001"

    def test_unit_statistics(self, seeded):
        stats = compute_unit_statistics(seeded, "INF203")
        assert stats.count == 6
        assert stats.mean == Decimal("11.58")
        assert stats.pass_count == 5
        assert stats.pass_rate == Decimal("83.33")

    def test_deferred_correction_then_drain(self, seeded):
        component = ComponentRepo(seeded).get_by_kind("INF201", "normal_session")
        entry = EntryRepo(seeded).get_for("GL2023001", component.id)
        scheduler = DeferredRecompute()

        correct_mark(seeded, entry.id, {"mark": 20}, expected_version=entry.version, scheduler=scheduler)
        assert get_final_grade(seeded, "GL2023001", "INF201", YEAR).grade == Decimal("15.60")

        results = run_pending_recomputes(seeded, scheduler)
        assert [g.grade for g in results] == [Decimal("18.00")]


class TestDeliberation:
    def test_eligibility_with_stored_params(self, seeded):
        assert evaluate_eligibility(seeded, "GL2023002", LEVEL, YEAR).eligible is True
        verdict = evaluate_eligibility(seeded, "GL2023003", LEVEL, YEAR)
        assert verdict.eligible is False
        assert verdict.capitalization_percentage == Decimal("30.00")

    def test_level_eligibility_in_name_order(self, seeded):
        verdicts = evaluate_level_eligibility(seeded, LEVEL, YEAR)
        assert [v.student_id for v in verdicts] == [
            "GL2023006",
            "GL2023003",
            "GL2023004",
            "GL2023001",
            "GL2023002",
            "GL2023005",
        ]

    def test_jury_decision(self, seeded):
        recap = record_deliberation_decision(
            seeded, "GL2023002", LEVEL, YEAR, "admitted", "jury01"
        )
        assert recap.decision == "admitted"

        df = compute_level_results(seeded, LEVEL, YEAR).set_index("StudentID")
        assert df.loc["GL2023002", "Decision"] == "admitted"


class TestConfigurationApi:
    def test_invalid_unit_is_reported_as_one_error(self, session):
        with pytest.raises(ValidationError) as exc:
            create_teaching_unit(session, "INF201", "", "L2", "GL", 0, "2023-2024")
        assert exc.value.field == "unit_data"
        assert "credits" in exc.value.message

    def test_create_configure_validate(self, session):
        create_teaching_unit(session, "inf299", "Compilers", "L2", "GL", 4, "2023-2024")
        configure_unit_components(
            session,
            "INF299",
            [
                {"kind": "project", "weight_percentage": 25},
                {"kind": "normal_session", "weight_percentage": 75},
            ],
        )
        report = validate_unit_configuration(session, "INF299")
        assert report.is_valid


class TestMarkEntryApi:
    @pytest.fixture
    def component(self, session, make_unit, make_student):
        make_unit("INF201")
        for n in range(1, 4):
            make_student(f"GL202300{n}")
        return ComponentRepo(session).get_by_kind("INF201", "normal_session")

    def test_record_and_finalize(self, session, component, entry_date):
        entry = record_mark(session, "GL2023001", component.id, 14, "prof01", entry_date=entry_date)
        change_entry_status(session, entry.id, "final", "prof01")

        grade = get_final_grade(session, "GL2023001", "INF201", YEAR)
        assert grade.grade == Decimal("9.80")

    def test_custom_errors_pass_through(self, session, component, entry_date):
        with pytest.raises(UnknownStudentError):
            record_mark(session, "GHOST", component.id, 14, "prof01", entry_date=entry_date)

    def test_unexpected_errors_are_wrapped(self, session, component):
        with (
            patch.object(
                StatisticsService, "compute_ue_statistics", side_effect=RuntimeError("disk on fire")
            ),
            pytest.raises(GradebookError) as exc,
        ):
            compute_unit_statistics(session, "INF201")
        assert "disk on fire" in exc.value.message
        assert "try again" in exc.value.user_message.lower()

    def test_import_dataframe(self, session, component, entry_date):
        df = pd.DataFrame(
            {
                "Student_ID": ["GL2023001", "GL2023002", None, "GL2023003"],
                "Mark": [12.5, 25, 10, None],
                "Comment": ["ok", None, None, None],
            }
        )

        result = import_evaluations(session, component.id, df, "prof01", entry_date)

        assert result.success == 1
        assert result.failed == 2
        entries = EntryRepo(session).list_for_unit("INF201")
        assert [(e.student_id, e.mode, e.comment) for e in entries] == [("GL2023001", "import", "ok")]

    def test_import_requires_columns(self, session, component):
        with pytest.raises(ValidationError):
            import_evaluations(session, component.id, pd.DataFrame({"mark": [10]}), "prof01")

    def test_empty_import_is_a_no_op(self, session, component):
        result = import_evaluations(session, component.id, pd.DataFrame(), "prof01")
        assert result.success == 0

    def test_import_can_be_disabled(self, session, component, monkeypatch):
        monkeypatch.setenv("APP_ENABLE_MARK_IMPORT", "false")
        reset_settings()
        with pytest.raises(ConfigurationError):
            import_evaluations(session, component.id, pd.DataFrame({"student_id": ["x"]}), "p")


class TestMarksFile:
    def test_read_csv_keeps_ids_as_text(self, tmp_path):
        path = tmp_path / "marks.csv"
        path.write_text("student_id,mark\n0042,12.5\n")
        df = read_marks_file(path)
        assert df.loc[0, "student_id"] == "0042"

    def test_read_xlsx(self, tmp_path):
        path = tmp_path / "marks.xlsx"
        pd.DataFrame({"student_id": ["GL2023001"], "mark": [14]}).to_excel(path, index=False)
        assert read_marks_file(path).loc[0, "mark"] == 14

    def test_unreadable_files(self, tmp_path):
        with pytest.raises(ImportFileError):
            read_marks_file(tmp_path / "absent.csv")
        other = tmp_path / "marks.txt"
        other.write_text("nope")
        with pytest.raises(ImportFileError):
            read_marks_file(other)
