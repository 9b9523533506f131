from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..infrastructure.exceptions import (
    ArchivedTeachingUnitError,
    IntegrityError,
    InvalidComponentWeightsError,
    InvalidRangeError,
    TeachingUnitInUseError,
    ValidationError,
    handle_database_error,
)
from ..infrastructure.logging import get_logger
from ..infrastructure.models import EvaluationComponentORM, TeachingUnitORM
from ..infrastructure.repositories import ComponentRepo, EntryRepo, TeachingUnitRepo
from .models import COUNTING_STATUSES, ConfigurationReport
from .schemas import ComponentInput, ComponentUpdate, TeachingUnitInput, TeachingUnitUpdate, parse_input
from .services import check_component_weights


def _as_dict(data: Any) -> dict[str, Any]:
    if isinstance(data, Mapping):
        return dict(data)
    return data.model_dump(exclude_unset=True)


class TeachingUnitService:
    """
    Configuration of teaching units and their evaluation components.

    Every write that touches components re-checks that the unit's weights
    still total 100% before flushing; failures leave the session untouched.
    """

    def __init__(self, s: Session, logger: logging.Logger | None = None):
        self.s = s
        self.logger = logger or get_logger(__name__)
        self.units = TeachingUnitRepo(s)
        self.components = ComponentRepo(s)

    # ----- units -----

    def create_unit(self, data: Mapping[str, Any] | TeachingUnitInput) -> TeachingUnitORM:
        payload = parse_input(TeachingUnitInput, _as_dict(data))
        if self.units.get(payload.code) is not None:
            raise IntegrityError(
                f"Teaching unit code {payload.code} already exists", constraint="unique"
            )
        if self.units.get_by_name(
            payload.name, payload.academic_level, payload.program, payload.academic_year
        ):
            raise IntegrityError(
                f"Teaching unit '{payload.name}' already exists for "
                f"{payload.academic_level} {payload.program} {payload.academic_year}",
                constraint="unique",
            )

        unit = TeachingUnitORM(status="active", **payload.model_dump())
        try:
            self.units.add(unit)
        except SQLAlchemyError as e:
            raise handle_database_error(e, "create_unit") from e
        self.logger.info("Created teaching unit %s", unit.code)
        return unit

    def _get_mutable(self, code: str) -> TeachingUnitORM:
        unit = self.units.get_required(code)
        if unit.status == "archived":
            raise ArchivedTeachingUnitError(code)
        return unit

    def update_unit(
        self, code: str, patch: Mapping[str, Any] | TeachingUnitUpdate
    ) -> TeachingUnitORM:
        unit = self._get_mutable(code)
        payload = parse_input(TeachingUnitUpdate, _as_dict(patch))
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            return unit
        return self.units.update(unit, **changes)

    def archive_unit(self, code: str) -> TeachingUnitORM:
        unit = self.units.get_required(code)
        if unit.status != "archived":
            self.units.update(unit, status="archived")
            self.logger.info("Archived teaching unit %s", code)
        return unit

    def delete_unit(self, code: str) -> None:
        unit = self._get_mutable(code)
        if self.units.count_entries(code):
            raise TeachingUnitInUseError(code)
        self.units.delete(unit)
        self.logger.info("Deleted teaching unit %s", code)

    # ----- components -----

    def _check_weights(self, code: str, weights: Iterable[Decimal]) -> None:
        valid, total = check_component_weights(weights)
        if not valid:
            raise InvalidComponentWeightsError(code, total)

    def _check_point_scale(self, component: EvaluationComponentORM, point_scale: int) -> None:
        """Existing marks must still fit on the new scale."""
        if point_scale == component.point_scale:
            return
        highest = EntryRepo(self.s).max_mark(component.id)
        if highest is not None and highest > point_scale:
            raise InvalidRangeError(highest, point_scale)

    def _has_counting_entries(self, code: str) -> bool:
        return bool(EntryRepo(self.s).list_for_unit(code, statuses=COUNTING_STATUSES))

    def _refresh_grades(self, code: str) -> None:
        if self._has_counting_entries(code):
            from .services_grades import FinalGradeService

            FinalGradeService(self.s, logger=self.logger).recompute_unit(code)

    def configure_components(
        self, code: str, components: Iterable[Mapping[str, Any] | ComponentInput]
    ) -> list[EvaluationComponentORM]:
        """
        Replace the unit's component set.

        Components are matched by kind: existing kinds are updated in place,
        new kinds are created and missing kinds are dropped (only when they
        carry no entries).
        """
        unit = self._get_mutable(code)
        items = [parse_input(ComponentInput, _as_dict(c)) for c in components]
        if not items:
            raise ValidationError("components", "At least one evaluation component is required")

        kinds = [c.kind for c in items]
        duplicates = sorted({k for k in kinds if kinds.count(k) > 1})
        if duplicates:
            raise ValidationError(
                "kind", f"Duplicate component kinds: {', '.join(duplicates)}", duplicates
            )
        self._check_weights(code, (c.weight_percentage for c in items))

        existing = {c.kind: c for c in unit.components}
        for kind, component in existing.items():
            if kind not in kinds and self.components.has_entries(component.id):
                raise TeachingUnitInUseError(code, what=f"component '{kind}'")
        for item in items:
            if item.kind in existing:
                self._check_point_scale(existing[item.kind], item.point_scale)

        for position, item in enumerate(items):
            current = existing.get(item.kind)
            if current is None:
                unit.components.append(
                    EvaluationComponentORM(
                        kind=item.kind,
                        name=item.name,
                        weight_percentage=item.weight_percentage,
                        point_scale=item.point_scale,
                        position=item.position or position,
                    )
                )
            else:
                current.name = item.name
                current.weight_percentage = item.weight_percentage
                current.point_scale = item.point_scale
                current.position = item.position or position
        for kind, component in existing.items():
            if kind not in kinds:
                unit.components.remove(component)

        try:
            self.s.flush()
        except SQLAlchemyError as e:
            raise handle_database_error(e, "configure_components") from e

        self.logger.info("Configured %d components for unit %s", len(items), code)
        self._refresh_grades(code)
        return self.components.list_for_unit(code)

    def add_component(
        self, code: str, component: Mapping[str, Any] | ComponentInput
    ) -> EvaluationComponentORM:
        unit = self._get_mutable(code)
        item = parse_input(ComponentInput, _as_dict(component))
        if self.components.get_by_kind(code, item.kind) is not None:
            raise ValidationError("kind", f"Unit {code} already has a '{item.kind}' component", item.kind)
        self._check_weights(
            code, [c.weight_percentage for c in unit.components] + [item.weight_percentage]
        )

        created = EvaluationComponentORM(
            kind=item.kind,
            name=item.name,
            weight_percentage=item.weight_percentage,
            point_scale=item.point_scale,
            position=item.position or len(unit.components),
        )
        unit.components.append(created)
        self.s.flush()
        return created

    def update_component(
        self, component_id: int, patch: Mapping[str, Any] | ComponentUpdate
    ) -> EvaluationComponentORM:
        component = self.components.get_with_unit(component_id)
        unit = self._get_mutable(component.unit_code)
        changes = parse_input(ComponentUpdate, _as_dict(patch)).model_dump(exclude_unset=True)
        if "weight_percentage" in changes:
            self._check_weights(
                unit.code,
                [
                    changes["weight_percentage"] if c.id == component_id else c.weight_percentage
                    for c in unit.components
                ],
            )
        if "point_scale" in changes:
            self._check_point_scale(component, changes["point_scale"])
        self.components.update(component, **changes)
        if "weight_percentage" in changes or "point_scale" in changes:
            self._refresh_grades(unit.code)
        return component

    def remove_component(self, component_id: int) -> None:
        component = self.components.get_with_unit(component_id)
        unit = self._get_mutable(component.unit_code)
        if self.components.has_entries(component_id):
            raise TeachingUnitInUseError(unit.code, what=f"component '{component.kind}'")
        self._check_weights(
            unit.code, [c.weight_percentage for c in unit.components if c.id != component_id]
        )
        unit.components.remove(component)
        self.s.flush()

    # ----- reporting -----

    def validate_configuration(self, code: str) -> ConfigurationReport:
        unit = self.units.get_required(code)
        components = self.components.list_for_unit(code)
        errors: list[str] = []
        warnings: list[str] = []

        valid, total = check_component_weights(c.weight_percentage for c in components)
        if not components:
            errors.append("No evaluation components defined")
        if not components or not valid:
            errors.append(f"Total percentage must be 100%, got {total:.2f}%")

        for c in components:
            if c.weight_percentage == 0:
                warnings.append(f"Component '{c.name}' has a zero weight")
        if unit.status != "active":
            warnings.append(f"Teaching unit is {unit.status}")

        return ConfigurationReport(
            unit_code=code,
            is_valid=not errors,
            total_percentage=total,
            errors=errors,
            warnings=warnings,
        )
