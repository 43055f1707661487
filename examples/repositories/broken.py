"""Sample repository whose construction always fails; discovery must skip it."""

from __future__ import annotations

from repokit import Repository, repository

from .people import Person


@repository("Broken")
class BrokenRepository(Repository[Person, int]):
    entity_class = Person

    def __init__(self) -> None:
        super().__init__()
        raise RuntimeError("broken on purpose")
