"""Tests for the session manager lifecycle."""

from __future__ import annotations

import importlib.metadata as metadata
import threading
from collections.abc import Iterator

import pytest

from examples.repositories.people import TEST_UNIT, Person, PersonRepository
from repokit import session as session_module
from repokit.adapters import PostgreSQLAdapter, SQLiteAdapter
from repokit.config import ConnectionProfileConfig
from repokit.errors import (
    ConnectionFailureError,
    DiscoveryNameCollisionError,
    InvalidConfigurationError,
    InvalidStateError,
    PersistenceError,
)
from repokit.models import ConnectionProperties, PersistenceUnit
from repokit.persistence import SessionFactory, open_session_factory
from repokit.repositories import Repository, RepositoryCatalog, register_repository, repository
from repokit.session import SessionManager, get_session_manager

LOCAL_CATALOG = RepositoryCatalog()


@repository("Member", catalog=LOCAL_CATALOG)
class MemberRepository(Repository[Person, int]):
    entity_class = Person


class _RecordingProvider:
    """Wraps the default provider and remembers what it was asked to open."""

    def __init__(self) -> None:
        self.calls: list[tuple[ConnectionProperties, PersistenceUnit | None]] = []
        self.factories: list[SessionFactory] = []

    def __call__(self, properties: ConnectionProperties, unit: PersistenceUnit | None) -> SessionFactory:
        self.calls.append((properties, unit))
        factory = open_session_factory(properties, unit)
        self.factories.append(factory)
        return factory


class _BadRolesAdapter(SQLiteAdapter):
    acquire_roles_query = "SELECT role FROM missing_roles_table"


@pytest.fixture(autouse=True)
def no_entry_points(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(metadata, "entry_points", lambda: metadata.EntryPoints(()))


@pytest.fixture
def provider() -> _RecordingProvider:
    return _RecordingProvider()


@pytest.fixture
def manager(provider: _RecordingProvider) -> Iterator[SessionManager]:
    manager = SessionManager(session_factory_provider=provider, persistence_units=[TEST_UNIT])
    manager.set_adapter(SQLiteAdapter({"Mode": "memory"}))
    manager.set_url("", 0, "")
    manager.set_persistence_unit_name("testPU")
    manager.set_package_list(["examples.repositories"])
    yield manager
    manager.logout()


def test_login_opens_factory_and_discovers_repositories(
    manager: SessionManager, provider: _RecordingProvider
) -> None:
    assert manager.login() is True

    assert manager.is_logged_in
    assert manager.roles == frozenset({"1"})
    assert manager.repository_names == ("Person",)
    repo = manager.get_repository("Person")
    assert isinstance(repo, PersonRepository)
    assert manager.get_repository("Person") is repo
    assert manager.get_repository("Broken") is None
    assert manager.last_failure is None
    ((properties, unit),) = provider.calls
    assert unit is TEST_UNIT
    assert properties.driver == "pysqlite"
    assert properties.persistence_unit == "testPU"
    assert manager.session_factory is provider.factories[0]


def test_login_passes_credentials_and_connection_properties(
    manager: SessionManager, provider: _RecordingProvider
) -> None:
    manager.set_connection_property("timeout", "5")

    assert manager.login("alice", "s3cret")

    properties, _ = provider.calls[0]
    assert (properties.username, properties.password) == ("alice", "s3cret")
    assert properties.extra == {"timeout": "5"}


def test_login_while_logged_in_raises_and_keeps_state(manager: SessionManager) -> None:
    manager.login()
    repo = manager.get_repository("Person")
    factory = manager.session_factory

    with pytest.raises(InvalidStateError):
        manager.login()

    assert manager.is_logged_in
    assert manager.session_factory is factory
    assert manager.get_repository("Person") is repo
    assert manager.roles == frozenset({"1"})


def test_login_requires_adapter_and_url() -> None:
    manager = SessionManager()

    with pytest.raises(InvalidConfigurationError):
        manager.login()
    manager.set_adapter(SQLiteAdapter({"Mode": "memory"}))
    with pytest.raises(InvalidConfigurationError):
        manager.login()
    with pytest.raises(InvalidConfigurationError):
        manager.set_adapter(None)


def test_set_url_requires_adapter() -> None:
    with pytest.raises(InvalidConfigurationError):
        SessionManager().set_url("localhost", 5432, "postgres")


def test_invalid_url_leaves_previous_url(manager: SessionManager) -> None:
    previous = manager.url

    with pytest.raises(InvalidConfigurationError):
        manager.set_adapter(PostgreSQLAdapter()).set_url("", 5432, "postgres")

    assert manager.url == previous


def test_factory_failure_is_recorded_and_login_returns_false() -> None:
    def _unreachable(properties: ConnectionProperties, unit: PersistenceUnit | None) -> SessionFactory:
        raise OSError("connection refused")

    manager = SessionManager(session_factory_provider=_unreachable)
    manager.set_adapter(PostgreSQLAdapter()).set_url("db.local", 5432, "postgres").set_package_list([])

    assert manager.login("alice", "wrong") is False

    assert not manager.is_logged_in
    assert isinstance(manager.last_failure, ConnectionFailureError)
    assert isinstance(manager.last_failure.__cause__, OSError)
    assert manager.roles == frozenset()
    assert manager.get_repository("Person") is None


def test_unknown_persistence_unit_is_a_login_failure(manager: SessionManager) -> None:
    manager.set_persistence_unit_name("missingPU")

    assert manager.login() is False
    assert isinstance(manager.last_failure, ConnectionFailureError)
    assert "missingPU" in str(manager.last_failure)


def test_role_query_failure_closes_factory(provider: _RecordingProvider) -> None:
    manager = SessionManager(session_factory_provider=provider, persistence_units=[TEST_UNIT])
    manager.set_adapter(_BadRolesAdapter({"Mode": "memory"})).set_url("", 0, "").set_package_list([])

    assert manager.login() is False

    assert not provider.factories[0].is_open
    assert isinstance(manager.last_failure, ConnectionFailureError)
    assert not manager.is_logged_in


class _UnclosableFactory:
    """Delegates to a real factory but fails to close."""

    def __init__(self, inner: SessionFactory) -> None:
        self._inner = inner

    @property
    def is_open(self) -> bool:
        return self._inner.is_open

    def open_session(self):  # type: ignore[no-untyped-def]
        return self._inner.open_session()

    def close(self) -> None:
        self._inner.close()
        raise RuntimeError("close failed")


def _unclosable_provider(properties: ConnectionProperties, unit: PersistenceUnit | None) -> SessionFactory:
    return _UnclosableFactory(open_session_factory(properties, unit))


def test_close_error_after_role_failure_keeps_login_result() -> None:
    manager = SessionManager(session_factory_provider=_unclosable_provider, persistence_units=[TEST_UNIT])
    manager.set_adapter(_BadRolesAdapter({"Mode": "memory"})).set_url("", 0, "").set_package_list([])

    assert manager.login() is False

    assert isinstance(manager.last_failure, ConnectionFailureError)
    assert "acquire user roles" in str(manager.last_failure)
    assert not manager.is_logged_in


def test_close_error_after_collision_keeps_collision() -> None:
    catalog = RepositoryCatalog()
    register_repository("X", lambda: PersonRepository(), catalog=catalog)
    register_repository("X", lambda: PersonRepository(), catalog=catalog)
    manager = SessionManager(session_factory_provider=_unclosable_provider, catalog=catalog)
    manager.set_adapter(SQLiteAdapter({"Mode": "memory"})).set_url("", 0, "").set_package_list([__name__])

    with pytest.raises(DiscoveryNameCollisionError):
        manager.login()


def test_successful_login_clears_previous_failure(manager: SessionManager) -> None:
    manager.set_persistence_unit_name("missingPU")
    assert manager.login() is False

    manager.set_persistence_unit_name("testPU")

    assert manager.login() is True
    assert manager.last_failure is None


def test_logout_clears_everything_and_is_idempotent(manager: SessionManager) -> None:
    manager.set_connection_property("timeout", "5")
    manager.login()
    repo = manager.get_repository("Person")
    assert repo is not None
    factory = manager.session_factory
    assert factory is not None

    manager.logout()
    manager.logout()

    assert not manager.is_logged_in
    assert not factory.is_open
    assert manager.get_repository("Person") is None
    assert manager.roles == frozenset()
    assert manager.repository_names == ()
    assert manager.session_factory is None
    assert manager.connection_properties == {}
    assert not repo.is_attached


def test_logout_when_never_logged_in_is_a_no_op() -> None:
    manager = SessionManager()

    manager.logout()

    assert not manager.is_logged_in


def test_relogin_builds_fresh_repositories(manager: SessionManager) -> None:
    manager.login()
    first = manager.get_repository("Person")
    manager.logout()

    assert manager.login() is True

    second = manager.get_repository("Person")
    assert second is not None and second is not first


@pytest.mark.parametrize(
    "change",
    [
        lambda m: m.set_adapter(SQLiteAdapter({"Mode": "memory"})),
        lambda m: m.set_url("", 0, ""),
        lambda m: m.set_persistence_unit_name("testPU"),
    ],
    ids=["adapter", "url", "persistence-unit"],
)
def test_configuration_changes_log_out_first(manager: SessionManager, change) -> None:  # type: ignore[no-untyped-def]
    manager.login()
    factory = manager.session_factory
    assert factory is not None

    change(manager)

    assert not manager.is_logged_in
    assert not factory.is_open
    assert manager.get_repository("Person") is None


def test_package_list_change_does_not_log_out(manager: SessionManager) -> None:
    manager.login()

    manager.set_package_list(["somewhere.else"])

    assert manager.is_logged_in
    assert manager.package_list == ("somewhere.else",)


def test_empty_persistence_unit_name_is_rejected(manager: SessionManager) -> None:
    with pytest.raises(InvalidConfigurationError):
        manager.set_persistence_unit_name("")
    with pytest.raises(InvalidConfigurationError):
        manager.set_persistence_unit_name(None)
    assert manager.persistence_unit_name == "testPU"


def test_name_collision_aborts_login(provider: _RecordingProvider) -> None:
    catalog = RepositoryCatalog()

    @repository("Twin", catalog=catalog)
    class FirstTwin(Repository[Person, int]):
        entity_class = Person

    @repository("Twin", catalog=catalog)
    class SecondTwin(Repository[Person, int]):
        entity_class = Person

    manager = SessionManager(session_factory_provider=provider, catalog=catalog)
    manager.set_adapter(SQLiteAdapter({"Mode": "memory"})).set_url("", 0, "").set_package_list([__name__])

    with pytest.raises(DiscoveryNameCollisionError):
        manager.login()

    assert not manager.is_logged_in
    assert manager.last_failure is None
    assert not provider.factories[0].is_open


def test_registered_factories_sharing_a_name_abort_login(provider: _RecordingProvider) -> None:
    catalog = RepositoryCatalog()
    register_repository("X", lambda: PersonRepository(), catalog=catalog)
    register_repository("X", lambda: PersonRepository(), catalog=catalog)
    manager = SessionManager(session_factory_provider=provider, catalog=catalog)
    manager.set_adapter(SQLiteAdapter({"Mode": "memory"})).set_url("", 0, "").set_package_list([__name__])

    with pytest.raises(DiscoveryNameCollisionError):
        manager.login()

    assert not manager.is_logged_in
    assert not provider.factories[0].is_open


def test_default_scan_scope_is_callers_package() -> None:
    manager = SessionManager(catalog=LOCAL_CATALOG)
    manager.set_adapter(SQLiteAdapter({"Mode": "memory"})).set_url("", 0, "")

    try:
        assert manager.login() is True
        assert manager.package_list is None
        assert manager.repository_names == ("Member",)
    finally:
        manager.logout()


def test_configure_applies_profile() -> None:
    profile = ConnectionProfileConfig(
        name="Memory",
        database="profiled",
        extra_properties={"Mode": "memory"},
        persistence_unit="testPU",
        packages=["examples.repositories"],
        properties={"cache": "shared"},
    )
    manager = SessionManager(persistence_units=[TEST_UNIT])

    manager.configure(profile)

    assert isinstance(manager.adapter, SQLiteAdapter)
    assert manager.url == "sqlite:///file:profiled?mode=memory&cache=shared&uri=true"
    assert manager.persistence_unit_name == "testPU"
    assert manager.package_list == ("examples.repositories",)
    assert manager.connection_properties == {"cache": "shared"}


def test_change_password_requires_login_and_user(manager: SessionManager) -> None:
    with pytest.raises(InvalidStateError):
        manager.change_password("new")

    manager.login()
    with pytest.raises(InvalidStateError):
        manager.change_password("new")


def test_change_password_unsupported_by_adapter(manager: SessionManager) -> None:
    manager.login("alice", "old")

    with pytest.raises(InvalidConfigurationError):
        manager.change_password("new")


def test_change_password_failure_raises_persistence_error(provider: _RecordingProvider) -> None:
    class _PasswordAdapter(SQLiteAdapter):
        change_password_template = "UPDATE missing_users SET secret = {password} WHERE name = {username}"

    manager = SessionManager(session_factory_provider=provider)
    manager.set_adapter(_PasswordAdapter({"Mode": "memory"})).set_url("", 0, "").set_package_list([])
    manager.login("alice", "old")

    try:
        with pytest.raises(PersistenceError):
            manager.change_password("new:pass'word")
        assert manager.is_logged_in
    finally:
        manager.logout()


def test_get_session_manager_returns_one_instance(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(session_module, "_DEFAULT_MANAGER", None)
    seen: list[SessionManager] = []

    def _grab() -> None:
        seen.append(get_session_manager())

    threads = [threading.Thread(target=_grab) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(seen) == 8
    assert all(instance is seen[0] for instance in seen)
    assert get_session_manager() is seen[0]
