"""initial gradebook schema

Revision ID: 0001_initial
Revises:
Create Date: 2024-01-08 00:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

LEVELS = "('L1', 'L2', 'L3', 'M1', 'M2', 'D1', 'D2', 'D3')"


def upgrade() -> None:
    op.create_table(
        "students",
        sa.Column("student_id", sa.String(length=20), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("student_id"),
    )
    op.create_table(
        "enrollments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.String(length=20), nullable=False),
        sa.Column("academic_level", sa.String(length=5), nullable=False),
        sa.Column("program", sa.String(length=10), nullable=False),
        sa.Column("academic_year", sa.String(length=9), nullable=False),
        sa.ForeignKeyConstraint(["student_id"], ["students.student_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "student_id", "academic_level", "academic_year", name="uq_enrollment_student_level_year"
        ),
        sa.CheckConstraint(f"academic_level IN {LEVELS}", name="ck_enrollment_level"),
    )
    op.create_index("ix_enrollments_student_id", "enrollments", ["student_id"])

    op.create_table(
        "teaching_units",
        sa.Column("code", sa.String(length=10), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("academic_level", sa.String(length=5), nullable=False),
        sa.Column("program", sa.String(length=10), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("academic_year", sa.String(length=9), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("code"),
        sa.UniqueConstraint(
            "name", "academic_level", "program", "academic_year", name="uq_unit_name_level"
        ),
        sa.CheckConstraint("credits > 0 AND credits <= 30", name="ck_unit_credits"),
        sa.CheckConstraint(f"academic_level IN {LEVELS}", name="ck_unit_level"),
        sa.CheckConstraint(
            "status IN ('active', 'inactive', 'archived')", name="ck_unit_status"
        ),
    )

    op.create_table(
        "evaluation_components",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("unit_code", sa.String(length=10), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("weight_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("point_scale", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["unit_code"], ["teaching_units.code"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("unit_code", "kind", name="uq_unit_component_kind"),
        sa.CheckConstraint(
            "weight_percentage >= 0 AND weight_percentage <= 100", name="ck_component_weight"
        ),
        sa.CheckConstraint("point_scale > 0 AND point_scale <= 100", name="ck_component_points"),
        sa.CheckConstraint(
            "kind IN ('continuous_assessment', 'normal_session', 'retake_session', "
            "'practical', 'personal_work', 'project')",
            name="ck_component_kind",
        ),
    )
    op.create_index("ix_evaluation_components_unit_code", "evaluation_components", ["unit_code"])

    op.create_table(
        "evaluation_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.String(length=20), nullable=False),
        sa.Column("component_id", sa.Integer(), nullable=False),
        sa.Column("mark", sa.Numeric(5, 2), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("author", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("mode", sa.String(length=20), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["student_id"], ["students.student_id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(
            ["component_id"], ["evaluation_components.id"], ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", "component_id", name="uq_entry_student_component"),
        sa.CheckConstraint("mark >= 0", name="ck_entry_mark"),
        sa.CheckConstraint(
            "status IN ('pending', 'provisional', 'final', 'cancelled', 'retake')",
            name="ck_entry_status",
        ),
        sa.CheckConstraint(
            "mode IN ('manual', 'import', 'system', 'compensation')", name="ck_entry_mode"
        ),
    )
    op.create_index("ix_evaluation_entries_student_id", "evaluation_entries", ["student_id"])
    op.create_index("ix_evaluation_entries_component_id", "evaluation_entries", ["component_id"])
    op.create_index("ix_evaluation_entries_status", "evaluation_entries", ["status"])

    op.create_table(
        "entry_status_changes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("previous_status", sa.String(length=20), nullable=False),
        sa.Column("new_status", sa.String(length=20), nullable=False),
        sa.Column("actor", sa.String(length=20), nullable=False),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["evaluation_entries.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_entry_status_changes_entry_id", "entry_status_changes", ["entry_id"])

    op.create_table(
        "final_grades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.String(length=20), nullable=False),
        sa.Column("unit_code", sa.String(length=10), nullable=False),
        sa.Column("academic_year", sa.String(length=9), nullable=False),
        sa.Column("grade", sa.Numeric(5, 2), nullable=False),
        sa.Column("capitalized", sa.Boolean(), nullable=False),
        sa.Column("mention", sa.String(length=16), nullable=False),
        sa.Column("computation_version", sa.Integer(), nullable=False),
        sa.Column("computed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["student_id"], ["students.student_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["unit_code"], ["teaching_units.code"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", "unit_code", "academic_year", name="uq_final_grade_key"),
        sa.CheckConstraint("grade >= 0 AND grade <= 20", name="ck_final_grade_range"),
        sa.CheckConstraint(
            "mention IN ('excellent', 'very-good', 'good', 'fairly-good', 'pass', 'fail', "
            "'eliminated')",
            name="ck_final_grade_mention",
        ),
    )
    op.create_index("ix_final_grades_student_id", "final_grades", ["student_id"])
    op.create_index("ix_final_grades_unit_code", "final_grades", ["unit_code"])
    op.create_index("ix_final_grades_capitalized", "final_grades", ["capitalized"])

    op.create_table(
        "student_recaps",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.String(length=20), nullable=False),
        sa.Column("academic_level", sa.String(length=5), nullable=False),
        sa.Column("academic_year", sa.String(length=9), nullable=False),
        sa.Column("unweighted_average", sa.Numeric(5, 2), nullable=True),
        sa.Column("weighted_average", sa.Numeric(5, 2), nullable=True),
        sa.Column("capitalization_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("capitalized_units", sa.Integer(), nullable=False),
        sa.Column("total_units", sa.Integer(), nullable=False),
        sa.Column("obtained_credits", sa.Integer(), nullable=False),
        sa.Column("total_credits", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("is_subject_to_deliberation", sa.Boolean(), nullable=False),
        sa.Column("is_eligible_for_deliberation", sa.Boolean(), nullable=False),
        sa.Column("has_been_deliberated", sa.Boolean(), nullable=False),
        sa.Column("decision", sa.String(length=10), nullable=True),
        sa.Column("overall_mention", sa.String(length=16), nullable=True),
        sa.Column("deliberated_by", sa.String(length=20), nullable=True),
        sa.Column("deliberated_at", sa.DateTime(), nullable=True),
        sa.Column("computed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["student_id"], ["students.student_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "student_id", "academic_level", "academic_year", name="uq_recap_student_level_year"
        ),
        sa.CheckConstraint(
            "(unweighted_average IS NULL OR (unweighted_average BETWEEN 0 AND 20)) "
            "AND (weighted_average IS NULL OR (weighted_average BETWEEN 0 AND 20)) "
            "AND (capitalization_percentage BETWEEN 0 AND 100)",
            name="ck_recap_ranges",
        ),
        sa.CheckConstraint(
            "decision IS NULL OR decision IN ('admitted', 'failed', 'deferred')",
            name="ck_recap_decision",
        ),
    )
    op.create_index("ix_student_recaps_student_id", "student_recaps", ["student_id"])
    op.create_index("ix_student_recaps_decision", "student_recaps", ["decision"])

    op.create_table(
        "ue_statistics",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("unit_code", sa.String(length=10), nullable=False),
        sa.Column("academic_year", sa.String(length=9), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("mean", sa.Numeric(5, 2), nullable=False),
        sa.Column("std_dev", sa.Numeric(5, 2), nullable=False),
        sa.Column("minimum", sa.Numeric(5, 2), nullable=False),
        sa.Column("maximum", sa.Numeric(5, 2), nullable=False),
        sa.Column("q1", sa.Numeric(5, 2), nullable=False),
        sa.Column("median", sa.Numeric(5, 2), nullable=False),
        sa.Column("q3", sa.Numeric(5, 2), nullable=False),
        sa.Column("pass_count", sa.Integer(), nullable=False),
        sa.Column("fail_count", sa.Integer(), nullable=False),
        sa.Column("pass_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("computed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["unit_code"], ["teaching_units.code"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("unit_code", "academic_year", name="uq_statistics_key"),
    )
    op.create_index("ix_ue_statistics_unit_code", "ue_statistics", ["unit_code"])

    op.create_table(
        "deliberation_params",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("academic_level", sa.String(length=5), nullable=False),
        sa.Column("min_capitalization", sa.Numeric(5, 2), nullable=False),
        sa.Column("max_non_capitalized_units", sa.Integer(), nullable=False),
        sa.Column("updated_by", sa.String(length=20), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("academic_level"),
        sa.CheckConstraint(
            "min_capitalization >= 0 AND min_capitalization <= 100",
            name="ck_params_min_capitalization",
        ),
        sa.CheckConstraint("max_non_capitalized_units >= 0", name="ck_params_max_non_capitalized"),
        sa.CheckConstraint(f"academic_level IN {LEVELS}", name="ck_params_level"),
    )


def downgrade() -> None:
    op.drop_table("deliberation_params")
    op.drop_index("ix_ue_statistics_unit_code", table_name="ue_statistics")
    op.drop_table("ue_statistics")
    op.drop_index("ix_student_recaps_decision", table_name="student_recaps")
    op.drop_index("ix_student_recaps_student_id", table_name="student_recaps")
    op.drop_table("student_recaps")
    op.drop_index("ix_final_grades_capitalized", table_name="final_grades")
    op.drop_index("ix_final_grades_unit_code", table_name="final_grades")
    op.drop_index("ix_final_grades_student_id", table_name="final_grades")
    op.drop_table("final_grades")
    op.drop_index("ix_entry_status_changes_entry_id", table_name="entry_status_changes")
    op.drop_table("entry_status_changes")
    op.drop_index("ix_evaluation_entries_status", table_name="evaluation_entries")
    op.drop_index("ix_evaluation_entries_component_id", table_name="evaluation_entries")
    op.drop_index("ix_evaluation_entries_student_id", table_name="evaluation_entries")
    op.drop_table("evaluation_entries")
    op.drop_index("ix_evaluation_components_unit_code", table_name="evaluation_components")
    op.drop_table("evaluation_components")
    op.drop_table("teaching_units")
    op.drop_index("ix_enrollments_student_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_table("students")
