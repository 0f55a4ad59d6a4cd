# Overview: Explicit handle on the transactional store, injected into every core component.

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from ..extensions import db


def actor_ref(actor_id) -> str | None:
    """Actors are opaque to the core; store whatever the caller gave as text."""
    return None if actor_id is None else str(actor_id)


class StorageHandle:
    """
    Scoped access to the database session.

    transaction() commits when the block exits normally and rolls back on
    every other exit path, exceptions included. Components never call
    commit() or rollback() themselves.
    """

    def __init__(self, database=db):
        self._db = database

    @property
    def session(self) -> Session:
        return self._db.session

    @property
    def dialect_name(self) -> str:
        return self._db.engine.dialect.name

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        session = self._db.session
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise

    @contextmanager
    def snapshot(self) -> Iterator[Session]:
        """
        Read-only scope for reports.

        Starts from a fresh transaction so reads see everything committed so
        far, and rolls back afterwards whatever happened inside.
        """
        session = self._db.session
        session.rollback()
        try:
            yield session
        finally:
            session.rollback()

    def reset(self) -> None:
        """Drop any half-finished transaction on the current session."""
        self._db.session.rollback()
