from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .exceptions import ConcurrentModificationError


class UnitOfWork:
    """Transaction boundary: commit on success, roll back on any exception."""

    def __init__(self, SessionLocal: sessionmaker):
        self.SessionLocal = SessionLocal

    @contextmanager
    def begin(self) -> Iterator[Session]:
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except StaleDataError as exc:
            # a versioned entry row changed underneath this transaction at commit time
            s.rollback()
            raise ConcurrentModificationError(None, None, None) from exc
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()
