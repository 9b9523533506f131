"""
Repository entry point.

Each aggregate has its own ``repositories_<entity>.py`` module built on the
generic ``BaseRepository``; they are re-exported here so callers can write::

    from gradebook.infrastructure.repositories import EntryRepo, FinalGradeRepo
"""

from __future__ import annotations

from .repositories_base import BaseRepository
from .repositories_component import ComponentRepo
from .repositories_entry import EntryRepo
from .repositories_grade import FinalGradeRepo
from .repositories_params import DeliberationParamsRepo
from .repositories_recap import RecapRepo
from .repositories_statistics import StatisticsRepo
from .repositories_student import StudentRepo
from .repositories_unit import TeachingUnitRepo

__all__ = [
    "BaseRepository",
    "StudentRepo",
    "TeachingUnitRepo",
    "ComponentRepo",
    "EntryRepo",
    "FinalGradeRepo",
    "RecapRepo",
    "StatisticsRepo",
    "DeliberationParamsRepo",
]
