"""Database adapters describing how to reach each supported RDBMS."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Mapping

from sqlalchemy.pool import StaticPool
from sqlglot import exp

from .errors import InvalidConfigurationError


class DatabaseAdapter(ABC):
    """Backend descriptor: URL grammar, driver identity and authentication SQL.

    ``extra_properties`` holds backend specific knobs (see
    :meth:`supported_extra_properties`); callers may change it freely before
    logging in. Everything else is a static fact about the backend.
    """

    name: ClassVar[str]
    driver_id: ClassVar[str]
    change_password_template: ClassVar[str] = ""
    acquire_roles_query: ClassVar[str]
    credentials_in_url: ClassVar[bool] = True
    sql_dialect: ClassVar[str]

    def __init__(self, extra_properties: Mapping[str, str] | None = None) -> None:
        self.extra_properties: dict[str, str] = dict(extra_properties or {})

    @abstractmethod
    def create_url(self, host: str | None, port: int, database: str | None) -> str:
        """Combine the URL parts into the backend's connection URL."""

    def supported_extra_properties(self) -> tuple[str, ...]:
        """Names of the keys recognised in ``extra_properties``."""

        return ()

    def validate_extra_properties(self) -> None:
        """Reject extra property keys this backend does not understand."""

        supported = set(self.supported_extra_properties())
        unknown = sorted(key for key in self.extra_properties if key not in supported)
        if unknown:
            raise InvalidConfigurationError(
                f"Unsupported extra properties for {self.name}: {', '.join(unknown)}"
            )

    def engine_options(self) -> dict[str, Any]:
        """Keyword arguments passed to ``create_engine`` for this backend."""

        return {}

    def change_password_statement(self, username: str, password: str) -> str:
        """Render ``change_password_template`` with a quoted user name and password."""

        return self.change_password_template.format(
            username=exp.to_identifier(username, quoted=True).sql(dialect=self.sql_dialect),
            password=exp.Literal.string(password).sql(dialect=self.sql_dialect),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(extra_properties={self.extra_properties!r})"


def _require_text(value: str | None, label: str) -> str:
    if value is None:
        raise InvalidConfigurationError(f"The {label} of the database cannot be None")
    if not value.strip():
        raise InvalidConfigurationError(f"The {label} of the database cannot be an empty string")
    return value


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL over the network. No extra properties are supported."""

    name = "PostgreSQL"
    driver_id = "psycopg"
    sql_dialect = "postgres"
    change_password_template = "ALTER USER {username} PASSWORD {password}"
    acquire_roles_query = (
        "WITH RECURSIVE cte AS ("
        "SELECT oid FROM pg_roles WHERE rolname = current_user "
        "UNION ALL SELECT m.roleid FROM cte JOIN pg_auth_members m ON m.member = cte.oid"
        ") SELECT oid::regrole::text AS rolename FROM cte"
    )

    def create_url(self, host: str | None, port: int, database: str | None) -> str:
        host = _require_text(host, "host")
        database = _require_text(database, "name")
        if not port:
            raise InvalidConfigurationError("The port of the database cannot be zero")
        if port < 0:
            raise InvalidConfigurationError("The port of the database cannot be negative")
        return f"postgresql://{host}:{port}/{database}"


class SQLiteAdapter(DatabaseAdapter):
    """Embeddable SQLite.

    The ``Mode`` extra property selects how the database is reached:

    * ``standalone`` (default): a database file on disk.
    * ``memory``: a named in-memory database shared by every session of the
      engine, or an anonymous one when no database name is given.
    * ``server``: a networked SQLite-compatible server reached through the
      ``libsql`` driver. The port is appended to the host only when non-zero.
    """

    name = "SQLite"
    sql_dialect = "sqlite"
    acquire_roles_query = "SELECT 1"
    # pysqlite rejects URLs that carry a user or password.
    credentials_in_url = False

    MODE = "Mode"
    MODES = ("standalone", "memory", "server")

    @property
    def mode(self) -> str:
        return self.extra_properties.get(self.MODE, "standalone").lower()

    @property
    def driver_id(self) -> str:  # type: ignore[override]
        return "libsql" if self.mode == "server" else "pysqlite"

    def supported_extra_properties(self) -> tuple[str, ...]:
        return (self.MODE,)

    def create_url(self, host: str | None, port: int, database: str | None) -> str:
        mode = self.mode
        if mode == "standalone":
            return f"sqlite:///{_require_text(database, 'name')}"
        if mode == "memory":
            if not database or not database.strip():
                return "sqlite://"
            return f"sqlite:///file:{database}?mode=memory&cache=shared&uri=true"
        if mode == "server":
            host = _require_text(host, "host")
            if port:
                host = f"{host}:{port}"
            return f"sqlite://{host}/{database or ''}"
        raise InvalidConfigurationError(
            f"The only supported modes for SQLite are: {', '.join(self.MODES)}"
        )

    def engine_options(self) -> dict[str, Any]:
        if self.mode == "memory":
            # One shared connection keeps the in-memory database alive for the engine.
            return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        return {}


ADAPTERS: Mapping[str, type[DatabaseAdapter]] = {
    PostgreSQLAdapter.name: PostgreSQLAdapter,
    SQLiteAdapter.name: SQLiteAdapter,
}


def get_adapter(name: str, extra_properties: Mapping[str, str] | None = None) -> DatabaseAdapter:
    """Instantiate the adapter registered under ``name`` (case-insensitive)."""

    for key, adapter_cls in ADAPTERS.items():
        if key.lower() == name.strip().lower():
            return adapter_cls(extra_properties)
    raise InvalidConfigurationError(
        f"Unknown database adapter '{name}'. Known adapters: {', '.join(ADAPTERS)}"
    )


__all__ = [
    "ADAPTERS",
    "DatabaseAdapter",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
    "get_adapter",
]
