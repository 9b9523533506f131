from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from ..infrastructure.exceptions import MissingDeliberationParamsError
from ..infrastructure.logging import LogContext, get_logger
from ..infrastructure.models import DeliberationParamsORM
from ..infrastructure.repositories import DeliberationParamsRepo
from .models import EligibilityVerdict
from .schemas import DeliberationParamsInput, parse_input
from .services import evaluate_criteria
from .services_recap import RecapService

ParamsLike = DeliberationParamsORM | DeliberationParamsInput | Mapping[str, Any]


class DeliberationService:
    """
    Decides whether a student may be presented to the deliberation jury.

    The recap is always recomputed first so the verdict reflects the current
    final grades.
    """

    def __init__(self, s: Session, logger: logging.Logger | None = None):
        self.s = s
        self.logger = logger or get_logger(__name__)
        self.params = DeliberationParamsRepo(s)
        self.recaps = RecapService(s, logger=self.logger)

    def _resolve_params(self, academic_level: str, params: ParamsLike | None):
        if params is None:
            stored = self.params.get_for_level(academic_level)
            if stored is None:
                raise MissingDeliberationParamsError(academic_level)
            return stored.min_capitalization, stored.max_non_capitalized_units
        if isinstance(params, Mapping):
            params = parse_input(
                DeliberationParamsInput, {"academic_level": academic_level, **params}
            )
        return params.min_capitalization, params.max_non_capitalized_units

    def evaluate_eligibility(
        self,
        student_id: str,
        academic_level: str,
        academic_year: str,
        params: ParamsLike | None = None,
    ) -> EligibilityVerdict:
        min_capitalization, max_non_capitalized = self._resolve_params(academic_level, params)

        with LogContext(
            student_id=student_id, academic_level=academic_level, academic_year=academic_year
        ):
            recap = self.recaps.recompute_recap(student_id, academic_level, academic_year)
            eligible, criteria, reason = evaluate_criteria(
                recap.capitalization_percentage,
                recap.total_units,
                recap.capitalized_units,
                min_capitalization,
                max_non_capitalized,
            )
            if recap.is_eligible_for_deliberation != eligible:
                recap.is_eligible_for_deliberation = eligible
                self.s.flush()

            if not eligible:
                self.logger.info("Not eligible for deliberation: %s", reason)

            return EligibilityVerdict(
                student_id=student_id,
                academic_level=academic_level,
                academic_year=academic_year,
                eligible=eligible,
                reason=reason,
                capitalization_percentage=recap.capitalization_percentage,
                non_capitalized_units=recap.total_units - recap.capitalized_units,
                total_units=recap.total_units,
                criteria=criteria,
            )

    def set_params(
        self,
        academic_level: str,
        min_capitalization: Any,
        max_non_capitalized_units: int,
        updated_by: str | None = None,
    ) -> DeliberationParamsORM:
        """Administrative upsert of a level's thresholds."""
        payload = parse_input(
            DeliberationParamsInput,
            {
                "academic_level": academic_level,
                "min_capitalization": min_capitalization,
                "max_non_capitalized_units": max_non_capitalized_units,
            },
        )
        return self.params.upsert(
            payload.academic_level,
            payload.min_capitalization,
            payload.max_non_capitalized_units,
            updated_by=updated_by,
        )
