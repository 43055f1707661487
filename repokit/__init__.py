"""Database session manager with adapter-driven connections and discovered repositories."""

from .adapters import ADAPTERS, DatabaseAdapter, PostgreSQLAdapter, SQLiteAdapter, get_adapter
from .errors import (
    ConnectionFailureError,
    DiscoveryError,
    DiscoveryInstantiationError,
    DiscoveryNameCollisionError,
    InvalidConfigurationError,
    InvalidStateError,
    PersistenceError,
    RepoKitError,
    SessionClosedError,
)
from .models import ConnectionProperties, PersistenceUnit, register_persistence_unit
from .repositories import Repository, register_repository, repository
from .session import SessionManager, get_session_manager

__version__ = "0.1.0"

__all__ = [
    "ADAPTERS",
    "ConnectionFailureError",
    "ConnectionProperties",
    "DatabaseAdapter",
    "DiscoveryError",
    "DiscoveryInstantiationError",
    "DiscoveryNameCollisionError",
    "InvalidConfigurationError",
    "InvalidStateError",
    "PersistenceError",
    "PersistenceUnit",
    "PostgreSQLAdapter",
    "RepoKitError",
    "Repository",
    "SQLiteAdapter",
    "SessionClosedError",
    "SessionManager",
    "__version__",
    "get_adapter",
    "get_session_manager",
    "register_persistence_unit",
    "register_repository",
    "repository",
]
