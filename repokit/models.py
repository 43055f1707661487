"""Shared dataclasses used across the session and persistence modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import MetaData
from sqlalchemy.engine import URL, make_url

from .errors import InvalidConfigurationError


@dataclass(frozen=True, slots=True)
class ConnectionProperties:
    """Everything needed to open a session factory for one login."""

    url: str
    driver: str
    username: str = ""
    password: str = field(default="", repr=False)
    persistence_unit: str | None = None
    extra: Mapping[str, str] = field(default_factory=dict)
    engine_options: Mapping[str, Any] = field(default_factory=dict)
    credentials_in_url: bool = True

    def sqlalchemy_url(self) -> URL:
        """Build the SQLAlchemy URL with driver, credentials and extra properties applied."""

        url = make_url(self.url)
        if "+" not in url.drivername and self.driver:
            url = url.set(drivername=f"{url.drivername}+{self.driver}")
        if self.credentials_in_url and self.username:
            url = url.set(username=self.username)
        if self.credentials_in_url and self.password:
            url = url.set(password=self.password)
        if self.extra:
            url = url.update_query_dict(dict(self.extra))
        return url


@dataclass(frozen=True, slots=True)
class PersistenceUnit:
    """Named group of mapped tables opened together by a session factory."""

    name: str
    metadata: MetaData
    create_schema: bool = True
    echo: bool = False


PERSISTENCE_UNITS: dict[str, PersistenceUnit] = {}


def register_persistence_unit(unit: PersistenceUnit) -> PersistenceUnit:
    """Publish a persistence unit so managers can resolve it by name."""

    existing = PERSISTENCE_UNITS.get(unit.name)
    if existing is not None and existing != unit:
        raise InvalidConfigurationError(f"Persistence unit '{unit.name}' is already registered")
    PERSISTENCE_UNITS[unit.name] = unit
    return unit


__all__ = [
    "ConnectionProperties",
    "PERSISTENCE_UNITS",
    "PersistenceUnit",
    "register_persistence_unit",
]
