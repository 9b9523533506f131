# gradebook/infrastructure/repositories_base.py
from __future__ import annotations

import builtins
from collections.abc import Iterable
from typing import Any, Generic, NoReturn, TypeVar

from sqlalchemy.orm import Session

from .exceptions import NotFoundError, handle_database_error
from .logging import get_logger

T = TypeVar("T")  # ORM model type


class BaseRepository(Generic[T]):
    """
    Generic repository with common CRUD + query helpers.

    Entity repositories set ``model`` (and optionally ``not_found``, the
    NotFoundError subclass raised by ``get_required``) and add their own
    decorated queries on top.
    """

    model: type[T]  # must be set by subclasses
    not_found: type[NotFoundError] = NotFoundError

    def __init__(self, session: Session):
        if not hasattr(self, "model") or self.model is None:
            raise ValueError(f"{self.__class__.__name__}.model must be set to an ORM class.")
        self.s = session
        self.logger = get_logger(self.__class__.__name__)

    def _handle_error(self, exc: Exception, operation: str) -> NoReturn:
        """Log the failure and raise the matching DatabaseError subclass."""
        self.logger.error("Database error in %s: %s", operation, exc, exc_info=True)
        raise handle_database_error(exc, operation) from exc

    # ---------- Read ----------
    def get(self, id_: Any) -> T | None:
        return self.s.get(self.model, id_)

    def get_required(self, id_: Any) -> T:
        obj = self.get(id_)
        if obj is None:
            raise self.not_found(id_)
        return obj

    def list(
        self,
        *filters: Any,
        order_by: Iterable[Any] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> builtins.list[T]:
        q = self.s.query(self.model)
        for f in filters:
            q = q.filter(f)
        if order_by:
            for ob in order_by:
                q = q.order_by(ob)
        if offset:
            q = q.offset(offset)
        if limit:
            q = q.limit(limit)
        return list(q.all())

    def exists(self, *filters: Any) -> bool:
        q = self.s.query(self.model)
        for f in filters:
            q = q.filter(f)
        return bool(self.s.query(q.exists()).scalar())

    def count(self, *filters: Any) -> int:
        q = self.s.query(self.model)
        for f in filters:
            q = q.filter(f)
        return int(q.count())

    # ---------- Write ----------
    def add(self, obj: T) -> T:
        self.s.add(obj)
        self.s.flush()  # get PKs without committing
        return obj

    def update(self, obj: T, **fields: Any) -> T:
        for k, v in fields.items():
            setattr(obj, k, v)
        self.s.flush()
        return obj

    def delete(self, obj: T) -> None:
        self.s.delete(obj)
        self.s.flush()
