"""Repository discovery: scan packages and entry points, then instantiate."""

from __future__ import annotations

import importlib
import importlib.metadata as metadata
import inspect
import logging
import pkgutil
from typing import Any, Iterable, Sequence

from repokit.errors import (
    DiscoveryError,
    DiscoveryInstantiationError,
    DiscoveryNameCollisionError,
)
from repokit.persistence import SessionFactory

from .base import Repository
from .declarations import CATALOG, RepositoryCatalog, RepositoryDeclaration, declared_name
from .registry import RepositoryRegistry

LOG = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "repokit.repositories"


class RepositoryLoader:
    """Discovers repository declarations and builds one instance of each.

    Declarations come from three places, in order: the catalogue entries made
    by modules inside ``packages`` (every module of each package is imported
    first), entry points in ``entry_point_group``, and ``declarations``
    supplied directly. Two declarations sharing a name abort discovery with
    :class:`DiscoveryNameCollisionError`; a declaration whose factory raises
    is logged and skipped.
    """

    def __init__(
        self,
        packages: Sequence[str],
        *,
        catalog: RepositoryCatalog | None = None,
        entry_point_group: str = ENTRY_POINT_GROUP,
        declarations: Iterable[RepositoryDeclaration] | None = None,
    ) -> None:
        self._packages = tuple(packages)
        self._catalog = catalog if catalog is not None else CATALOG
        self._entry_point_group = entry_point_group
        self._static = list(declarations or [])
        self._discovered: list[RepositoryDeclaration] | None = None
        self._failures: list[DiscoveryInstantiationError] = []

    @property
    def packages(self) -> tuple[str, ...]:
        return self._packages

    @property
    def failures(self) -> tuple[DiscoveryInstantiationError, ...]:
        """Instantiation failures skipped by the last :meth:`load`."""

        return tuple(self._failures)

    def discover(self) -> list[RepositoryDeclaration]:
        """Collect declarations and enforce name uniqueness."""

        self._import_packages()
        candidates = self._catalog.declarations(self._packages)
        eps = metadata.entry_points()
        group = eps.select(group=self._entry_point_group)
        for entry_point in sorted(group, key=lambda ep: ep.name):
            candidates.append(self._load_entry_point(entry_point))
        candidates.extend(self._static)

        discovered: dict[str, RepositoryDeclaration] = {}
        for declaration in candidates:
            existing = discovered.get(declaration.name)
            if existing is None:
                discovered[declaration.name] = declaration
                continue
            if existing.factory is declaration.factory:
                continue
            raise DiscoveryNameCollisionError(
                f"Repository '{declaration.name}' is declared by both "
                f"{existing.module}.{existing.qualname} and {declaration.module}.{declaration.qualname}"
            )
        self._discovered = list(discovered.values())
        return list(self._discovered)

    def load(
        self,
        factory: SessionFactory,
        registry: RepositoryRegistry | None = None,
    ) -> RepositoryRegistry:
        """Instantiate every discovered declaration once and attach it to ``factory``."""

        if self._discovered is None:
            self.discover()
        assert self._discovered is not None
        registry = registry if registry is not None else RepositoryRegistry()
        self._failures = []
        for declaration in self._discovered:
            try:
                instance = declaration.factory()
            except Exception as exc:
                self._skip(declaration, exc)
                continue
            if not isinstance(instance, Repository):
                raise DiscoveryError(
                    f"Declaration '{declaration.name}' produced {type(instance).__name__}, not a Repository"
                )
            try:
                instance.attach(factory, name=declaration.name)
            except Exception as exc:
                self._skip(declaration, exc)
                continue
            registry.register(declaration.name, instance)
            LOG.debug("Registered repository", extra={"repository": declaration.name})
        return registry

    def _skip(self, declaration: RepositoryDeclaration, exc: Exception) -> None:
        LOG.exception("Skipping repository that failed to instantiate", extra={"repository": declaration.name})
        failure = DiscoveryInstantiationError(f"Failed to instantiate repository '{declaration.name}': {exc}")
        failure.__cause__ = exc
        self._failures.append(failure)

    def _import_packages(self) -> None:
        for package in self._packages:
            try:
                module = importlib.import_module(package)
            except Exception:
                LOG.exception("Skipping package that failed to import", extra={"package": package})
                continue
            path = getattr(module, "__path__", None)
            if path is None:
                continue
            for info in pkgutil.walk_packages(path, prefix=f"{module.__name__}.", onerror=self._on_walk_error):
                try:
                    importlib.import_module(info.name)
                except Exception:
                    LOG.exception("Skipping module that failed to import", extra={"module_name": info.name})

    @staticmethod
    def _on_walk_error(name: str) -> None:
        LOG.warning("Skipping package that failed to import", extra={"package": name})

    def _load_entry_point(self, entry_point: metadata.EntryPoint) -> RepositoryDeclaration:
        try:
            obj: Any = entry_point.load()
        except Exception as exc:
            raise DiscoveryError(f"Failed to load repository entry point '{entry_point.name}'") from exc
        name = declared_name(obj)
        if not (inspect.isclass(obj) and issubclass(obj, Repository)) or name is None:
            raise DiscoveryError(
                f"Entry point '{entry_point.name}' does not reference a declared repository class"
            )
        return RepositoryDeclaration(
            name=name,
            factory=obj,
            module=obj.__module__,
            qualname=obj.__qualname__,
        )


__all__ = ["ENTRY_POINT_GROUP", "RepositoryLoader"]
