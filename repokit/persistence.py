"""Session factories backing the session manager."""

from __future__ import annotations

import logging
import weakref
from typing import Callable, Protocol, runtime_checkable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .errors import ConnectionFailureError
from .models import ConnectionProperties, PersistenceUnit

LOG = logging.getLogger(__name__)


@runtime_checkable
class SessionFactory(Protocol):
    """Protocol implemented by session factories."""

    @property
    def is_open(self) -> bool:
        """Whether sessions can still be opened."""

    def open_session(self) -> Session:
        """Open a new ORM session bound to the factory's engine."""

    def close(self) -> None:
        """Close every session opened so far and release the engine."""


SessionFactoryProvider = Callable[[ConnectionProperties, "PersistenceUnit | None"], SessionFactory]


class SqlAlchemySessionFactory:
    """Session factory wrapping a SQLAlchemy engine and sessionmaker."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._maker = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._sessions: weakref.WeakSet[Session] = weakref.WeakSet()
        self._open = True

    @classmethod
    def from_properties(
        cls,
        properties: ConnectionProperties,
        unit: PersistenceUnit | None = None,
    ) -> SqlAlchemySessionFactory:
        """Create the engine and verify it can connect.

        The first connection is made eagerly so unreachable servers, bad
        credentials and malformed URLs surface here instead of on first use.
        """

        try:
            engine = create_engine(
                properties.sqlalchemy_url(),
                echo=unit.echo if unit else False,
                **dict(properties.engine_options),
            )
        except Exception as exc:
            raise ConnectionFailureError(f"Failed to create engine for '{properties.url}': {exc}") from exc
        try:
            if unit is not None and unit.create_schema:
                unit.metadata.create_all(engine)
            else:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
        except Exception as exc:
            engine.dispose()
            raise ConnectionFailureError(f"Failed to connect to '{properties.url}': {exc}") from exc
        LOG.debug(
            "Opened session factory",
            extra={"url": properties.url, "persistence_unit": properties.persistence_unit},
        )
        return cls(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._open

    def open_session(self) -> Session:
        if not self._open:
            raise ConnectionFailureError("The session factory is closed")
        session = self._maker()
        self._sessions.add(session)
        return session

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        for session in list(self._sessions):
            session.close()
        self._sessions.clear()
        self._engine.dispose()
        LOG.debug("Closed session factory", extra={"url": str(self._engine.url)})


def open_session_factory(
    properties: ConnectionProperties,
    unit: PersistenceUnit | None = None,
) -> SessionFactory:
    """Default :data:`SessionFactoryProvider` backed by SQLAlchemy."""

    return SqlAlchemySessionFactory.from_properties(properties, unit)


__all__ = [
    "SessionFactory",
    "SessionFactoryProvider",
    "SqlAlchemySessionFactory",
    "open_session_factory",
]
