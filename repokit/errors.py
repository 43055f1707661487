"""Exception hierarchy shared by the session manager and repositories."""

from __future__ import annotations


class RepoKitError(RuntimeError):
    """Base error for repokit failures."""


class InvalidConfigurationError(RepoKitError, ValueError):
    """Raised when adapter inputs or manager configuration are missing or malformed."""


class InvalidStateError(RepoKitError):
    """Raised when an operation is not valid in the current session state."""


class ConnectionFailureError(RepoKitError):
    """Recorded when the session factory cannot be opened or roles cannot be read."""


class DiscoveryError(RepoKitError):
    """Raised when repository discovery cannot complete."""


class DiscoveryNameCollisionError(DiscoveryError):
    """Raised when two repository definitions declare the same name."""


class DiscoveryInstantiationError(DiscoveryError):
    """Describes a repository definition that could not be instantiated."""


class SessionClosedError(RepoKitError):
    """Raised when a repository is used after its session was closed."""


class PersistenceError(RepoKitError):
    """Raised when a repository transaction fails."""


__all__ = [
    "ConnectionFailureError",
    "DiscoveryError",
    "DiscoveryInstantiationError",
    "DiscoveryNameCollisionError",
    "InvalidConfigurationError",
    "InvalidStateError",
    "PersistenceError",
    "RepoKitError",
    "SessionClosedError",
]
