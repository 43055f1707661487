"""Name-keyed registry of the live repositories for the current session."""

from __future__ import annotations

from typing import Any, Iterator

from repokit.errors import DiscoveryNameCollisionError

from .base import Repository


class RepositoryRegistry:
    """Holds exactly one repository instance per declared name."""

    def __init__(self) -> None:
        self._repositories: dict[str, Repository[Any, Any]] = {}

    def register(self, name: str, repository: Repository[Any, Any]) -> None:
        """Register a repository; a second repository under the same name is fatal."""

        if name in self._repositories:
            raise DiscoveryNameCollisionError(f"Repository '{name}' already exists")
        self._repositories[name] = repository

    def get(self, name: str) -> Repository[Any, Any] | None:
        return self._repositories.get(name)

    def names(self) -> tuple[str, ...]:
        """Return the registered names in registration order."""

        return tuple(self._repositories)

    def clear(self) -> None:
        """Close every repository and forget it."""

        repositories = list(self._repositories.values())
        self._repositories.clear()
        for repository in repositories:
            repository.close()

    def __contains__(self, name: object) -> bool:
        return name in self._repositories

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._repositories))

    def __len__(self) -> int:
        return len(self._repositories)


__all__ = ["RepositoryRegistry"]
