"""Repository declarations: the decorator and catalogue discovery reads from."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, TypeVar

from repokit.errors import InvalidConfigurationError

if TYPE_CHECKING:
    from .base import Repository

RepositoryFactory = Callable[[], "Repository[Any, Any]"]
R = TypeVar("R", bound=type)

NAME_ATTRIBUTE = "__repository_name__"


@dataclass(frozen=True, slots=True)
class RepositoryDeclaration:
    """A named repository definition and the callable that builds it."""

    name: str
    factory: RepositoryFactory
    module: str
    qualname: str

    def in_packages(self, packages: Iterable[str]) -> bool:
        """Whether the declaring module lives inside one of ``packages``."""

        return any(self.module == pkg or self.module.startswith(f"{pkg}.") for pkg in packages)

    def redeclares(self, other: RepositoryDeclaration) -> bool:
        """Whether ``other`` is this definition declared again under the same name.

        True for the same factory object, or for a class with the same module
        and qualname (a reloaded module). Anything else under the same name is
        a separate declaration and collides during discovery.
        """

        if self.name != other.name:
            return False
        if self.factory is other.factory:
            return True
        return (
            isinstance(self.factory, type)
            and isinstance(other.factory, type)
            and (self.module, self.qualname) == (other.module, other.qualname)
        )


def _validate_name(name: object) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidConfigurationError(f"Repository names must be non-empty strings, got {name!r}")
    return name


class RepositoryCatalog:
    """Ordered collection of repository declarations made at import time."""

    def __init__(self) -> None:
        self._declarations: list[RepositoryDeclaration] = []

    def register(
        self,
        name: str,
        factory: RepositoryFactory,
        *,
        module: str | None = None,
        qualname: str | None = None,
    ) -> RepositoryDeclaration:
        """Record a declaration; re-declaring the same definition under its name replaces it."""

        declaration = RepositoryDeclaration(
            name=_validate_name(name),
            factory=factory,
            module=module or getattr(factory, "__module__", "") or "",
            qualname=qualname or getattr(factory, "__qualname__", repr(factory)),
        )
        self._declarations = [
            existing for existing in self._declarations if not existing.redeclares(declaration)
        ]
        self._declarations.append(declaration)
        return declaration

    def declarations(self, packages: Iterable[str] | None = None) -> list[RepositoryDeclaration]:
        """Declarations made inside ``packages``, or all of them."""

        if packages is None:
            return list(self._declarations)
        scope = tuple(packages)
        return [declaration for declaration in self._declarations if declaration.in_packages(scope)]

    def clear(self) -> None:
        self._declarations.clear()

    def __len__(self) -> int:
        return len(self._declarations)


CATALOG = RepositoryCatalog()


def repository(name: str, *, catalog: RepositoryCatalog | None = None) -> Callable[[R], R]:
    """Class decorator declaring a repository under a unique ``name``.

    Usage::

        @repository("Person")
        class PersonRepository(Repository[Person, int]):
            entity_class = Person
    """

    _validate_name(name)

    def _decorate(cls: R) -> R:
        setattr(cls, NAME_ATTRIBUTE, name)
        (catalog if catalog is not None else CATALOG).register(
            name,
            cls,
            module=cls.__module__,
            qualname=cls.__qualname__,
        )
        return cls

    return _decorate


def register_repository(
    name: str,
    factory: RepositoryFactory,
    *,
    catalog: RepositoryCatalog | None = None,
) -> RepositoryDeclaration:
    """Explicitly declare a repository built by ``factory``."""

    return (catalog if catalog is not None else CATALOG).register(name, factory)


def declared_name(obj: object) -> str | None:
    """Return the name a class was declared under, if any.

    Only the class itself is consulted; subclasses of a declared repository
    are not declared until decorated themselves.
    """

    cls = obj if isinstance(obj, type) else type(obj)
    return vars(cls).get(NAME_ATTRIBUTE)


__all__ = [
    "CATALOG",
    "RepositoryCatalog",
    "RepositoryDeclaration",
    "RepositoryFactory",
    "declared_name",
    "register_repository",
    "repository",
]
