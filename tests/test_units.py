from decimal import Decimal

import pytest

from gradebook.domain.services import check_component_weights
from gradebook.domain.services_grades import FinalGradeService
from gradebook.domain.services_ledger import EvaluationLedger, InlineRecompute
from gradebook.domain.services_units import TeachingUnitService
from gradebook.infrastructure.exceptions import (
    ArchivedTeachingUnitError,
    IntegrityError,
    InvalidComponentWeightsError,
    InvalidRangeError,
    MultipleValidationError,
    TeachingUnitInUseError,
    UnknownTeachingUnitError,
    ValidationError,
)
from gradebook.infrastructure.repositories import ComponentRepo, TeachingUnitRepo


def unit_payload(**overrides):
    data = {
        "code": "inf201",
        "name": "Algorithms and data structures",
        "academic_level": "L2",
        "program": "GL",
        "credits": 6,
        "academic_year": "2023-2024",
    }
    data.update(overrides)
    return data


@pytest.fixture
def service(session):
    return TeachingUnitService(session)


class TestWeightInvariant:
    @pytest.mark.parametrize(
        "weights,valid",
        [
            (["30", "70"], True),
            (["33.33", "33.33", "33.33"], True),
            (["100"], True),
            (["50", "49"], False),
            (["60", "60"], False),
            ([], True),
        ],
    )
    def test_total_must_be_one_hundred(self, weights, valid):
        ok, total = check_component_weights(Decimal(w) for w in weights)
        assert ok is valid
        assert total == sum((Decimal(w) for w in weights), Decimal("0"))


class TestTeachingUnitLifecycle:
    def test_create_normalizes_the_code(self, service):
        unit = service.create_unit(unit_payload())
        assert unit.code == "INF201"
        assert unit.status == "active"
        assert unit.credits == 6

    def test_duplicate_code_is_rejected(self, service):
        service.create_unit(unit_payload())
        with pytest.raises(IntegrityError) as exc:
            service.create_unit(unit_payload(name="Another name"))
        assert exc.value.constraint == "unique"

    def test_duplicate_name_within_level_program_year_is_rejected(self, service):
        service.create_unit(unit_payload())
        with pytest.raises(IntegrityError):
            service.create_unit(unit_payload(code="INF299"))

    def test_same_name_in_another_year_is_fine(self, service):
        service.create_unit(unit_payload())
        other = service.create_unit(unit_payload(code="INF201B", academic_year="2024-2025"))
        assert other.academic_year == "2024-2025"

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"credits": 0}, "credits"),
            ({"academic_year": "2023-2025"}, "academic_year"),
            ({"academic_level": "L9"}, "academic_level"),
            ({"code": "INF 201"}, "code"),
        ],
    )
    def test_invalid_payloads(self, service, overrides, field):
        with pytest.raises(ValidationError) as exc:
            service.create_unit(unit_payload(**overrides))
        assert exc.value.field == field

    def test_several_invalid_fields_are_reported_together(self, service):
        with pytest.raises(MultipleValidationError) as exc:
            service.create_unit(unit_payload(credits=99, name=""))
        assert {e.field for e in exc.value.validation_errors} == {"credits", "name"}

    def test_update_and_archive(self, service):
        service.create_unit(unit_payload())
        unit = service.update_unit("INF201", {"credits": 4, "status": "inactive"})
        assert unit.credits == 4
        assert unit.status == "inactive"

        service.archive_unit("INF201")
        with pytest.raises(ArchivedTeachingUnitError):
            service.update_unit("INF201", {"credits": 5})

    def test_status_cannot_be_archived_through_update(self, service):
        service.create_unit(unit_payload())
        with pytest.raises(ValidationError):
            service.update_unit("INF201", {"status": "archived"})

    def test_delete_refused_while_entries_exist(
        self, session, service, make_unit, make_student, entry_date
    ):
        make_unit("MAT201")
        make_student("GL2023001")
        component = ComponentRepo(session).get_by_kind("MAT201", "normal_session")
        EvaluationLedger(session, scheduler=InlineRecompute(session)).record_entry(
            "GL2023001", component.id, 10, "prof01", entry_date=entry_date
        )

        with pytest.raises(TeachingUnitInUseError):
            service.delete_unit("MAT201")

    def test_delete_unused_unit(self, session, service, make_unit):
        make_unit("MAT201")
        service.delete_unit("MAT201")
        assert TeachingUnitRepo(session).get("MAT201") is None
        assert ComponentRepo(session).list_for_unit("MAT201") == []

    def test_archived_unit_cannot_be_deleted(self, session, service, make_unit):
        make_unit("MAT201")
        service.archive_unit("MAT201")
        with pytest.raises(ArchivedTeachingUnitError):
            service.delete_unit("MAT201")
        assert TeachingUnitRepo(session).get("MAT201") is not None

    def test_unknown_unit(self, service):
        with pytest.raises(UnknownTeachingUnitError):
            service.archive_unit("NOPE")


class TestComponents:
    def test_configure_fills_default_names_and_positions(self, service):
        service.create_unit(unit_payload())
        components = service.configure_components(
            "INF201",
            [
                {"kind": "continuous_assessment", "weight_percentage": 40},
                {"kind": "normal_session", "weight_percentage": 60},
            ],
        )

        assert [(c.kind, c.name, c.position) for c in components] == [
            ("continuous_assessment", "Continuous assessment", 0),
            ("normal_session", "Normal session exam", 1),
        ]
        assert all(c.point_scale == 20 for c in components)

    def test_weights_not_totalling_one_hundred_are_refused(self, service):
        service.create_unit(unit_payload())
        with pytest.raises(InvalidComponentWeightsError):
            service.configure_components(
                "INF201",
                [
                    {"kind": "continuous_assessment", "weight_percentage": 40},
                    {"kind": "normal_session", "weight_percentage": 50},
                ],
            )

    def test_duplicate_kinds_are_refused(self, service):
        service.create_unit(unit_payload())
        with pytest.raises(ValidationError) as exc:
            service.configure_components(
                "INF201",
                [
                    {"kind": "normal_session", "weight_percentage": 50},
                    {"kind": "normal_session", "weight_percentage": 50},
                ],
            )
        assert exc.value.field == "kind"

    def test_empty_component_list_is_refused(self, service):
        service.create_unit(unit_payload())
        with pytest.raises(ValidationError):
            service.configure_components("INF201", [])

    def test_reconfigure_matches_by_kind(self, session, service, make_unit):
        make_unit("INF201", components=[("continuous_assessment", 30), ("normal_session", 70)])
        before = {c.kind: c.id for c in ComponentRepo(session).list_for_unit("INF201")}

        after = service.configure_components(
            "INF201",
            [
                {"kind": "normal_session", "weight_percentage": 60},
                {"kind": "project", "weight_percentage": 40},
            ],
        )

        by_kind = {c.kind: c for c in after}
        assert set(by_kind) == {"normal_session", "project"}
        assert by_kind["normal_session"].id == before["normal_session"]
        assert by_kind["normal_session"].weight_percentage == Decimal("60")

    def test_component_with_entries_cannot_be_dropped(
        self, session, service, make_unit, make_student, entry_date
    ):
        make_unit("INF201")
        make_student("GL2023001")
        component = ComponentRepo(session).get_by_kind("INF201", "continuous_assessment")
        EvaluationLedger(session, scheduler=InlineRecompute(session)).record_entry(
            "GL2023001", component.id, 12, "prof01", entry_date=entry_date
        )

        with pytest.raises(TeachingUnitInUseError):
            service.configure_components(
                "INF201", [{"kind": "normal_session", "weight_percentage": 100}]
            )
        with pytest.raises(TeachingUnitInUseError):
            service.remove_component(component.id)

    def test_add_and_remove_keep_the_invariant(self, session, service, make_unit):
        make_unit("INF201", components=[("normal_session", 100)])

        with pytest.raises(InvalidComponentWeightsError):
            service.add_component("INF201", {"kind": "project", "weight_percentage": 20})

        added = service.add_component("INF201", {"kind": "project", "weight_percentage": 0})
        assert added.position == 1
        service.remove_component(added.id)
        assert [c.kind for c in ComponentRepo(session).list_for_unit("INF201")] == [
            "normal_session"
        ]

    def test_removing_a_weighted_component_breaks_the_total(self, session, service, make_unit):
        make_unit("INF201")
        component = ComponentRepo(session).get_by_kind("INF201", "continuous_assessment")
        with pytest.raises(InvalidComponentWeightsError):
            service.remove_component(component.id)

    def test_update_component_point_scale(self, session, service, make_unit):
        make_unit("INF201", components=[("project", 100)])
        component = ComponentRepo(session).get_by_kind("INF201", "project")
        updated = service.update_component(component.id, {"point_scale": 40, "name": "Capstone"})
        assert updated.point_scale == 40
        assert updated.name == "Capstone"

    @pytest.fixture
    def marked_project(self, session, make_unit, make_student, entry_date):
        make_unit("INF201", components=[("project", 100)])
        make_student("GL2023001")
        component = ComponentRepo(session).get_by_kind("INF201", "project")
        ledger = EvaluationLedger(session, scheduler=InlineRecompute(session))
        entry = ledger.record_entry("GL2023001", component.id, 18, "prof01", entry_date=entry_date)
        ledger.set_status(entry.id, "final", "prof01")
        return component

    def test_point_scale_cannot_drop_below_recorded_marks(self, session, service, marked_project):
        with pytest.raises(InvalidRangeError) as exc:
            service.update_component(marked_project.id, {"point_scale": 10})
        assert Decimal(exc.value.details["mark"]) == 18

        assert marked_project.point_scale == 20
        grade = FinalGradeService(session).get_final_grade("GL2023001", "INF201", "2023-2024")
        assert grade.grade == Decimal("18.00")

    def test_reconfigure_cannot_shrink_the_scale_either(self, service, marked_project):
        with pytest.raises(InvalidRangeError):
            service.configure_components(
                "INF201", [{"kind": "project", "weight_percentage": 100, "point_scale": 15}]
            )
        assert marked_project.point_scale == 20

    def test_point_scale_may_grow_over_recorded_marks(self, session, service, marked_project):
        service.update_component(marked_project.id, {"point_scale": 40})
        grade = FinalGradeService(session).get_final_grade("GL2023001", "INF201", "2023-2024")
        assert grade.grade == Decimal("9.00")

    def test_weight_change_recomputes_existing_grades(
        self, session, service, make_unit, make_student, entry_date
    ):
        make_unit("INF201")
        make_student("GL2023001")
        components = {c.kind: c for c in ComponentRepo(session).list_for_unit("INF201")}
        ledger = EvaluationLedger(session, scheduler=InlineRecompute(session))
        for kind, mark in (("continuous_assessment", 20), ("normal_session", 10)):
            entry = ledger.record_entry(
                "GL2023001", components[kind].id, mark, "prof01", entry_date=entry_date
            )
            ledger.set_status(entry.id, "final", "prof01")

        grades = FinalGradeService(session)
        assert grades.get_final_grade("GL2023001", "INF201", "2023-2024").grade == Decimal("13.00")

        service.configure_components(
            "INF201",
            [
                {"kind": "continuous_assessment", "weight_percentage": 50},
                {"kind": "normal_session", "weight_percentage": 50},
            ],
        )
        assert grades.get_final_grade("GL2023001", "INF201", "2023-2024").grade == Decimal("15.00")


class TestConfigurationReport:
    def test_valid_configuration(self, service, make_unit):
        make_unit("INF201")
        report = service.validate_configuration("INF201")
        assert report.is_valid
        assert report.total_percentage == Decimal("100")
        assert report.errors == []

    def test_unit_without_components(self, service, make_unit):
        make_unit("INF201", components=[])
        report = service.validate_configuration("INF201")
        assert not report.is_valid
        assert report.errors == [
            "No evaluation components defined",
            "Total percentage must be 100%, got 0.00%",
        ]

    def test_warnings_do_not_invalidate(self, service, make_unit):
        make_unit("INF201", components=[("normal_session", 100), ("project", 0)])
        service.update_unit("INF201", {"status": "inactive"})

        report = service.validate_configuration("INF201")
        assert report.is_valid
        assert report.warnings == [
            "Component 'Project' has a zero weight",
            "Teaching unit is inactive",
        ]
