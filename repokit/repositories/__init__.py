"""Repository base class, declarations, registry and discovery."""

from .base import Repository
from .declarations import (
    CATALOG,
    RepositoryCatalog,
    RepositoryDeclaration,
    declared_name,
    register_repository,
    repository,
)
from .loader import ENTRY_POINT_GROUP, RepositoryLoader
from .registry import RepositoryRegistry

__all__ = [
    "CATALOG",
    "ENTRY_POINT_GROUP",
    "Repository",
    "RepositoryCatalog",
    "RepositoryDeclaration",
    "RepositoryLoader",
    "RepositoryRegistry",
    "declared_name",
    "register_repository",
    "repository",
]
