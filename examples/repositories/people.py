"""Sample entity and repository used for manual and automated tests."""

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from repokit import PersistenceUnit, Repository, repository


class Base(DeclarativeBase):
    """Declarative base for the sample persistence unit."""


class Person(Base):
    __tablename__ = "person"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    def __repr__(self) -> str:
        return f"Person(id={self.id!r}, name={self.name!r})"


@repository("Person")
class PersonRepository(Repository[Person, int]):
    """Minimal repository used to validate the discovery pipeline."""

    entity_class = Person
    id_class = int


TEST_UNIT = PersistenceUnit(name="testPU", metadata=Base.metadata)
