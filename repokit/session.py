"""Session manager: configuration, login/logout lifecycle, roles and repositories."""

from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .adapters import DatabaseAdapter
from .config import ConnectionProfileConfig
from .errors import (
    ConnectionFailureError,
    InvalidConfigurationError,
    InvalidStateError,
    PersistenceError,
)
from .models import PERSISTENCE_UNITS, ConnectionProperties, PersistenceUnit
from .persistence import SessionFactory, SessionFactoryProvider, open_session_factory
from .repositories import (
    ENTRY_POINT_GROUP,
    Repository,
    RepositoryCatalog,
    RepositoryLoader,
    RepositoryRegistry,
)

LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class ConnectionConfig:
    """Mutable configuration owned by a :class:`SessionManager`."""

    adapter: DatabaseAdapter | None = None
    url: str | None = None
    persistence_unit_name: str | None = None
    package_list: tuple[str, ...] | None = None
    connection_properties: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class _ActiveSession:
    """Everything that exists only while logged in; swapped out as one unit."""

    properties: ConnectionProperties
    factory: SessionFactory
    roles: frozenset[str]
    registry: RepositoryRegistry


class SessionManager:
    """
    Owns the connection configuration and the login/logout state machine.

    A successful :meth:`login` opens a session factory through the configured
    adapter, reads the user's roles and discovers the repositories, which are
    then available through :meth:`get_repository` until :meth:`logout`.
    Changing the adapter, URL or persistence unit while logged in logs out
    first, so configuration never changes under a live session.

    The manager is not internally concurrent: an ``RLock`` serialises login,
    logout and configuration calls, but sessions handed to repositories are
    meant for one thread at a time.
    """

    def __init__(
        self,
        *,
        session_factory_provider: SessionFactoryProvider | None = None,
        catalog: RepositoryCatalog | None = None,
        entry_point_group: str = ENTRY_POINT_GROUP,
        persistence_units: Iterable[PersistenceUnit] | None = None,
    ) -> None:
        self._provider = session_factory_provider or open_session_factory
        self._catalog = catalog
        self._entry_point_group = entry_point_group
        self._units: dict[str, PersistenceUnit] = {unit.name: unit for unit in persistence_units or ()}
        self._config = ConnectionConfig()
        self._active: _ActiveSession | None = None
        self._last_failure: Exception | None = None
        self._lock = threading.RLock()

    @property
    def adapter(self) -> DatabaseAdapter | None:
        return self._config.adapter

    @property
    def url(self) -> str | None:
        return self._config.url

    @property
    def persistence_unit_name(self) -> str | None:
        return self._config.persistence_unit_name

    @property
    def package_list(self) -> tuple[str, ...] | None:
        """Packages scanned for repositories; None means the caller's package."""

        return self._config.package_list

    @property
    def connection_properties(self) -> Mapping[str, str]:
        return dict(self._config.connection_properties)

    @property
    def is_logged_in(self) -> bool:
        active = self._active
        return active is not None and active.factory.is_open

    @property
    def last_failure(self) -> Exception | None:
        """Why the last login returned False, or None after a successful login."""

        return self._last_failure

    @property
    def roles(self) -> frozenset[str]:
        active = self._active
        return active.roles if active is not None else frozenset()

    @property
    def repository_names(self) -> tuple[str, ...]:
        active = self._active
        return active.registry.names() if active is not None else ()

    @property
    def session_factory(self) -> SessionFactory | None:
        active = self._active
        return active.factory if active is not None else None

    def set_adapter(self, adapter: DatabaseAdapter | None) -> SessionManager:
        """Switch database backend; logs out first."""

        if adapter is None:
            raise InvalidConfigurationError("The database adapter cannot be None")
        with self._lock:
            self.logout()
            self._config.adapter = adapter
        return self

    def set_url(self, host: str | None, port: int, database: str | None) -> SessionManager:
        """Build the database URL through the current adapter; logs out first."""

        with self._lock:
            self.logout()
            adapter = self._config.adapter
            if adapter is None:
                raise InvalidConfigurationError("Set a database adapter before setting the URL")
            self._config.url = adapter.create_url(host, port, database)
        return self

    def set_persistence_unit_name(self, name: str | None) -> SessionManager:
        """Select the persistence unit opened on login; logs out first."""

        if name is None:
            raise InvalidConfigurationError("The name of the persistence unit cannot be None")
        if not name.strip():
            raise InvalidConfigurationError("The name of the persistence unit cannot be an empty string")
        with self._lock:
            self.logout()
            self._config.persistence_unit_name = name
        return self

    def set_package_list(self, packages: Iterable[str] | None) -> SessionManager:
        """Set the packages scanned for repositories on the next login."""

        with self._lock:
            self._config.package_list = tuple(packages) if packages is not None else None
        return self

    def set_connection_property(self, key: str, value: str) -> SessionManager:
        """Add a connection property (URL query parameter) for the next login.

        Properties are cleared on logout and must be set again before the next
        login.
        """

        with self._lock:
            self._config.connection_properties[key] = value
        return self

    def add_persistence_unit(self, unit: PersistenceUnit) -> SessionManager:
        with self._lock:
            self._units[unit.name] = unit
        return self

    def configure(self, profile: ConnectionProfileConfig) -> SessionManager:
        """Apply a connection profile from the configuration file."""

        with self._lock:
            self.set_adapter(profile.build_adapter())
            self.set_url(profile.host, profile.port, profile.database)
            if profile.persistence_unit:
                self.set_persistence_unit_name(profile.persistence_unit)
            if profile.packages is not None:
                self.set_package_list(profile.packages)
            for key, value in profile.properties.items():
                self.set_connection_property(key, value)
        return self

    def login(self, username: str = "", password: str = "") -> bool:
        """Open a session for ``username``.

        Returns False when the backend cannot be reached, rejects the
        credentials or the role query fails; :attr:`last_failure` then says
        why. Raises :class:`InvalidStateError` when already logged in,
        :class:`InvalidConfigurationError` when no adapter or URL is set, and
        lets repository discovery errors such as a name collision propagate.
        """

        with self._lock:
            if self.is_logged_in:
                raise InvalidStateError("Log out before logging in again")
            if self._active is not None:
                self.logout()
            config = self._config
            adapter = config.adapter
            if adapter is None:
                raise InvalidConfigurationError("Set a database adapter before logging in")
            if not config.url:
                raise InvalidConfigurationError("Set the database URL before logging in")
            packages = config.package_list if config.package_list is not None else _caller_packages()
            properties = ConnectionProperties(
                url=config.url,
                driver=adapter.driver_id,
                username=username or "",
                password=password or "",
                persistence_unit=config.persistence_unit_name,
                extra=dict(config.connection_properties),
                engine_options=adapter.engine_options(),
                credentials_in_url=adapter.credentials_in_url,
            )

            try:
                unit = self._resolve_unit(config.persistence_unit_name)
                factory = self._provider(properties, unit)
            except Exception as exc:
                return self._fail("Failed to open session factory", adapter, exc)

            try:
                roles = self._acquire_roles(factory, adapter)
            except Exception as exc:
                _close_after_failure(factory)
                return self._fail("Failed to acquire user roles", adapter, exc)

            loader = RepositoryLoader(
                packages,
                catalog=self._catalog,
                entry_point_group=self._entry_point_group,
            )
            try:
                registry = loader.load(factory)
            except Exception:
                _close_after_failure(factory)
                raise

            self._active = _ActiveSession(
                properties=properties,
                factory=factory,
                roles=roles,
                registry=registry,
            )
            self._last_failure = None
            LOG.info(
                "Logged in",
                extra={
                    "adapter": adapter.name,
                    "roles": len(roles),
                    "repositories": len(registry),
                    "skipped_repositories": len(loader.failures),
                },
            )
            return True

    def logout(self) -> None:
        """Close the session and forget roles and repositories; no-op when logged out."""

        with self._lock:
            active, self._active = self._active, None
            if active is None:
                return
            self._config.connection_properties.clear()
            try:
                active.registry.clear()
            finally:
                active.factory.close()
            LOG.info("Logged out", extra={"url": active.properties.url})

    def get_repository(self, name: str) -> Repository[Any, Any] | None:
        """Return the repository discovered under ``name`` for the current session."""

        active = self._active
        if active is None:
            return None
        return active.registry.get(name)

    def change_password(self, new_password: str) -> None:
        """Change the logged-in user's password using the adapter's statement."""

        with self._lock:
            active = self._active
            if active is None or not active.factory.is_open:
                raise InvalidStateError("Log in before changing the password")
            adapter = self._config.adapter
            assert adapter is not None
            username = active.properties.username
            if not username:
                raise InvalidStateError("The current session has no user name")
            if not adapter.change_password_template:
                raise InvalidConfigurationError(f"{adapter.name} does not support changing passwords")
            statement = _escape_colons(adapter.change_password_statement(username, new_password))
            session = active.factory.open_session()
            try:
                session.execute(text(statement))
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise PersistenceError(f"Failed to change the password of '{username}': {exc}") from exc
            finally:
                session.close()
            self._active = replace(active, properties=replace(active.properties, password=new_password))
            LOG.info("Changed password", extra={"user": username})

    def _resolve_unit(self, name: str | None) -> PersistenceUnit | None:
        if name is None:
            return None
        unit = self._units.get(name) or PERSISTENCE_UNITS.get(name)
        if unit is None:
            raise InvalidConfigurationError(f"Persistence unit '{name}' is not registered")
        return unit

    @staticmethod
    def _acquire_roles(factory: SessionFactory, adapter: DatabaseAdapter) -> frozenset[str]:
        session = factory.open_session()
        try:
            rows = session.execute(text(adapter.acquire_roles_query)).all()
        finally:
            session.close()
        return frozenset(str(row[0]) for row in rows)

    def _fail(self, message: str, adapter: DatabaseAdapter, exc: Exception) -> bool:
        if isinstance(exc, ConnectionFailureError):
            failure = exc
        else:
            failure = ConnectionFailureError(f"{message}: {exc}")
            failure.__cause__ = exc
        self._last_failure = failure
        LOG.warning(message, extra={"adapter": adapter.name, "url": self._config.url})
        LOG.debug(str(exc))
        return False


def _close_after_failure(factory: SessionFactory) -> None:
    try:
        factory.close()
    except Exception:
        LOG.exception("Failed to close session factory after a failed login")


def _caller_packages() -> tuple[str, ...]:
    """Package of the first caller outside repokit, used as the default scan scope."""

    frame = inspect.currentframe()
    try:
        while frame is not None:
            module_name = frame.f_globals.get("__name__", "")
            if module_name != "repokit" and not module_name.startswith("repokit."):
                return (frame.f_globals.get("__package__") or module_name,)
            frame = frame.f_back
    finally:
        del frame
    return ()


def _escape_colons(value: str) -> str:
    # text() treats ":name" as a bind parameter.
    return value.replace(":", "\\:")


_DEFAULT_MANAGER: SessionManager | None = None
_DEFAULT_LOCK = threading.Lock()


def get_session_manager() -> SessionManager:
    """Return the process-wide session manager, creating it on first use."""

    global _DEFAULT_MANAGER
    with _DEFAULT_LOCK:
        if _DEFAULT_MANAGER is None:
            _DEFAULT_MANAGER = SessionManager()
        return _DEFAULT_MANAGER


__all__ = [
    "ConnectionConfig",
    "SessionManager",
    "get_session_manager",
]
