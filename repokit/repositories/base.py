"""Generic CRUD repository bound to the session manager's current session factory."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generic, Iterable, Iterator, Sequence, TypeVar

from sqlalchemy import Select, delete, func, select
from sqlalchemy.engine import ScalarResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repokit.errors import InvalidConfigurationError, PersistenceError, SessionClosedError
from repokit.persistence import SessionFactory

from .declarations import declared_name

EntityT = TypeVar("EntityT")
IdT = TypeVar("IdT")


class Repository(Generic[EntityT, IdT]):
    """
    CRUD facade for one mapped entity type.

    Subclasses name the mapped class through ``entity_class`` and are declared
    with :func:`repokit.repositories.repository`. Instances are built with no
    arguments by discovery and then attached to the session factory of the
    current login; each one keeps its own long-lived ORM session.

    Once the owning session factory is closed (logout), every operation raises
    :class:`SessionClosedError`. Transactional operations commit exactly once;
    when the commit fails the transaction is rolled back and
    :class:`PersistenceError` is raised.

    For ad-hoc queries, build on :meth:`select` and iterate with :meth:`stream`::

        stmt = repo.select().where(Person.name == "Ada").order_by(Person.id)
        for person in repo.stream(stmt):
            ...
    """

    entity_class: type[Any]
    id_class: type[Any] | None = None

    def __init__(self) -> None:
        if getattr(type(self), "entity_class", None) is None:
            raise InvalidConfigurationError(f"{type(self).__name__} must define entity_class")
        self._name: str | None = declared_name(self)
        self._factory: SessionFactory | None = None
        self._session: Session | None = None

    @property
    def name(self) -> str | None:
        """Name the repository was declared or registered under."""

        return self._name

    @property
    def is_attached(self) -> bool:
        return self._session is not None and self._factory is not None and self._factory.is_open

    @property
    def session(self) -> Session:
        """The underlying ORM session, for anything the repository does not cover."""

        return self._live_session()

    def attach(self, factory: SessionFactory, *, name: str | None = None) -> None:
        """Bind the repository to ``factory``, replacing any previous binding."""

        self.close()
        self._factory = factory
        self._session = factory.open_session()
        if name:
            self._name = name

    def close(self) -> None:
        """Release the repository's session; further operations raise SessionClosedError."""

        session, self._session, self._factory = self._session, None, None
        if session is not None:
            session.close()

    def save_and_flush(self, entity: EntityT) -> EntityT:
        """Insert or update ``entity`` and return the persistent instance with its identifier."""

        with self._transaction() as session:
            merged = session.merge(entity)
        return merged

    def save_and_flush_all(self, entities: Iterable[EntityT]) -> list[EntityT]:
        """Save every entity in a single transaction, preserving input order."""

        with self._transaction() as session:
            merged = [session.merge(entity) for entity in entities]
        return merged

    def find_by_id(self, id: IdT | None) -> EntityT | None:
        """Return the entity with primary key ``id``, or None."""

        if id is None:
            return None
        return self._live_session().get(self.entity_class, id)

    def find_all_by_id(self, ids: Iterable[IdT | None]) -> list[EntityT]:
        """Return the entities found for ``ids`` in order; missing ids are skipped."""

        found: list[EntityT] = []
        for id in ids:
            entity = self.find_by_id(id)
            if entity is not None:
                found.append(entity)
        return found

    def find_all(self) -> Sequence[EntityT]:
        return self.stream().all()

    def count(self) -> int:
        session = self._live_session()
        return int(session.scalar(select(func.count()).select_from(self.entity_class)) or 0)

    def select(self) -> Select[Any]:
        """Start a SELECT over the repository's entity."""

        return select(self.entity_class)

    def stream(self, statement: Select[Any] | None = None) -> ScalarResult[EntityT]:
        """Iterate the entities matched by ``statement`` (all rows by default)."""

        session = self._live_session()
        return session.scalars(statement if statement is not None else self.select())

    def delete(self, entity: EntityT) -> None:
        with self._transaction() as session:
            session.delete(session.merge(entity))

    def delete_all(self, entities: Iterable[EntityT]) -> None:
        with self._transaction() as session:
            for entity in entities:
                session.delete(session.merge(entity))

    def delete_by_id(self, id: IdT | None) -> None:
        """Delete the entity with primary key ``id``; a missing id is a no-op."""

        entity = self.find_by_id(id)
        if entity is not None:
            self.delete(entity)

    def delete_all_by_id(self, ids: Iterable[IdT | None]) -> None:
        self.delete_all(self.find_all_by_id(ids))

    def refresh(self, entity: EntityT) -> EntityT:
        """Reload ``entity`` from the database in place and return it."""

        session = self._live_session()
        try:
            session.refresh(entity)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to refresh {self._label()}: {exc}") from exc
        return entity

    def delete_everything(self) -> None:
        """Delete every row of the entity's table.

        Destructive and unconditional; meant for tests and resets only.
        """

        with self._transaction() as session:
            session.execute(delete(self.entity_class))

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._live_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(f"Transaction failed in {self._label()}: {exc}") from exc
        except Exception:
            session.rollback()
            raise

    def _live_session(self) -> Session:
        if self._session is None or self._factory is None or not self._factory.is_open:
            raise SessionClosedError(f"{self._label()} is not bound to an open session")
        return self._session

    def _label(self) -> str:
        return f"repository '{self._name or type(self).__name__}'"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, attached={self.is_attached})"


__all__ = ["EntityT", "IdT", "Repository"]
