"""Records, replicant tuples, and tagged attribute values.

A replicant tuple is ``(type, id, attributes)``. Attribute values are
either plain scalars or one of the tagged values below, which mark a
foreign key for translation on the loading side.

Usage:
    from db_replicator.replication.values import Record, Reference

    post = Record(type="Post", id=10, attributes={"id": 10, "author_id": 1})
    ref = Reference(type="Author", id=1)
"""

from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field


class Reference(BaseModel):
    """Foreign key to a single record of ``type`` on the dump system."""

    model_config = ConfigDict(frozen=True)

    type: str
    id: Any


class ReferenceList(BaseModel):
    """Collection of dump-system ids, all of records of ``type``."""

    model_config = ConfigDict(frozen=True)

    type: str
    ids: tuple[Any, ...] = ()


class Record(BaseModel):
    """A row read from (or written to) storage, tagged with its record type."""

    type: str
    id: Any
    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, Any]:
        """``(type, id)`` pair used for de-duplication and key mapping."""
        return (self.type, self.id)


class ReplicantTuple(NamedTuple):
    """One unit of the dump stream."""

    type: str
    id: Any
    attributes: dict[str, Any]

