"""Tests for the database adapters."""

from __future__ import annotations

import pytest
from sqlalchemy.pool import StaticPool

from repokit.adapters import ADAPTERS, PostgreSQLAdapter, SQLiteAdapter, get_adapter
from repokit.errors import InvalidConfigurationError


def test_postgresql_url_is_deterministic() -> None:
    adapter = PostgreSQLAdapter()

    first = adapter.create_url("db.local", 5432, "inventory")
    second = adapter.create_url("db.local", 5432, "inventory")

    assert first == second == "postgresql://db.local:5432/inventory"


@pytest.mark.parametrize(
    ("host", "port", "database"),
    [
        ("", 5432, "inventory"),
        ("   ", 5432, "inventory"),
        (None, 5432, "inventory"),
        ("db.local", 5432, ""),
        ("db.local", 5432, None),
        ("db.local", 0, "inventory"),
    ],
)
def test_postgresql_url_rejects_missing_parts(host: str | None, port: int, database: str | None) -> None:
    with pytest.raises(InvalidConfigurationError):
        PostgreSQLAdapter().create_url(host, port, database)


def test_postgresql_has_no_extra_properties() -> None:
    adapter = PostgreSQLAdapter()

    assert adapter.supported_extra_properties() == ()
    assert adapter.driver_id == "psycopg"
    assert "pg_auth_members" in adapter.acquire_roles_query
    assert "{username}" in adapter.change_password_template
    assert "{password}" in adapter.change_password_template


def test_sqlite_defaults_to_standalone_file() -> None:
    adapter = SQLiteAdapter()

    assert adapter.mode == "standalone"
    assert adapter.driver_id == "pysqlite"
    assert adapter.create_url("", 0, "data.db") == "sqlite:///data.db"
    with pytest.raises(InvalidConfigurationError):
        adapter.create_url("", 0, "")


def test_sqlite_memory_mode_urls() -> None:
    adapter = SQLiteAdapter({"Mode": "memory"})

    assert adapter.create_url("", 0, "testdb") == "sqlite:///file:testdb?mode=memory&cache=shared&uri=true"
    assert adapter.create_url(None, 0, "") == "sqlite://"
    assert adapter.engine_options()["poolclass"] is StaticPool


def test_sqlite_mode_is_case_insensitive() -> None:
    adapter = SQLiteAdapter({"Mode": "MEMORY"})

    assert adapter.mode == "memory"


def test_sqlite_server_mode_appends_port_only_when_set() -> None:
    adapter = SQLiteAdapter({"Mode": "server"})

    assert adapter.create_url("db.local", 8080, "app") == "sqlite://db.local:8080/app"
    assert adapter.create_url("db.local", 0, "app") == "sqlite://db.local/app"
    assert adapter.driver_id == "libsql"
    assert adapter.engine_options() == {}


def test_sqlite_server_mode_requires_host() -> None:
    with pytest.raises(InvalidConfigurationError):
        SQLiteAdapter({"Mode": "server"}).create_url("", 8080, "app")


def test_sqlite_rejects_unknown_mode() -> None:
    adapter = SQLiteAdapter({"Mode": "cluster"})

    with pytest.raises(InvalidConfigurationError, match="standalone, memory, server"):
        adapter.create_url("", 0, "app")


def test_extra_properties_can_change_before_url_is_built() -> None:
    adapter = SQLiteAdapter()
    adapter.extra_properties["Mode"] = "memory"

    assert adapter.create_url("", 0, "") == "sqlite://"


def test_validate_extra_properties_names_unknown_keys() -> None:
    SQLiteAdapter({"Mode": "memory"}).validate_extra_properties()

    with pytest.raises(InvalidConfigurationError, match="Timeout"):
        SQLiteAdapter({"Timeout": "5"}).validate_extra_properties()
    with pytest.raises(InvalidConfigurationError):
        PostgreSQLAdapter({"Mode": "memory"}).validate_extra_properties()


def test_get_adapter_looks_up_by_name() -> None:
    adapter = get_adapter("sqlite", {"Mode": "memory"})

    assert isinstance(adapter, SQLiteAdapter)
    assert adapter.extra_properties == {"Mode": "memory"}
    assert set(ADAPTERS) == {"PostgreSQL", "SQLite"}
    with pytest.raises(InvalidConfigurationError):
        get_adapter("oracle")


def test_change_password_statement_quotes_user_and_password() -> None:
    statement = PostgreSQLAdapter().change_password_statement('bo"b', "s3cret")

    assert statement == 'ALTER USER "bo""b" PASSWORD \'s3cret\''


def test_change_password_statement_keeps_quotes_inside_the_literal() -> None:
    statement = PostgreSQLAdapter().change_password_statement("bob", "it's")

    assert statement.startswith('ALTER USER "bob" PASSWORD \'')
    assert statement.endswith("s'")
    assert "'it's'" not in statement
