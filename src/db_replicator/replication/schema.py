"""Declarative record types and their relationships.

Projects declare their record types, the relationships between them, and
per-type replication options. ``ReplicationSchema.resolve()`` validates
the declarations once and produces an immutable ``TypeRegistry`` with
every inherited option filled in.

Usage:
    from db_replicator.replication.schema import (
        ReplicationSchema, TypeDef, Relationship,
    )

    schema = ReplicationSchema(types=[
        TypeDef(name="Author", table="authors", natural_key=["email"],
                relationships=[Relationship(name="posts", kind="has_many", type="Post")]),
        TypeDef(name="Post", table="posts",
                relationships=[Relationship(name="author", kind="belongs_to", type="Author")]),
    ])
    registry = schema.resolve()
    registry["Post"].belongs_to
"""

import re
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from db_replicator.replication.errors import SchemaError, UnknownTypeError

RelationshipKind = Literal["belongs_to", "has_one", "has_many", "many_to_many"]

SINGULAR_KINDS = frozenset({"belongs_to", "has_one"})


def snake_case(name: str) -> str:
    """Convert a ``CamelCase`` type name to ``snake_case``."""
    name = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name).lower()


class Relationship(BaseModel):
    """Association from one record type to another."""

    model_config = ConfigDict(frozen=True)

    name: str                                   # association name
    kind: RelationshipKind
    type: str                                   # associated record type
    foreign_key: str | None = None              # FK column (see resolve defaults)
    through: str | None = None                  # join table (many_to_many only)
    association_foreign_key: str | None = None  # join-table column for the associated side


class TypeDef(BaseModel):
    """Declaration of one record type. Unset options are inherited."""

    name: str
    table: str | None = None
    pk: str | None = None
    inherits: str | None = None                 # parent type name
    type_field: str | None = None               # discriminator column (single-table inheritance)
    relationships: list[Relationship] = Field(default_factory=list)
    extra_associations: list[str] = Field(default_factory=list)  # has_many / m2m to dump
    natural_key: list[str] | None = None        # None inherits, [] always creates
    preserve_identity: bool | None = None       # write dumped pk verbatim on load


class ResolvedType(BaseModel):
    """A record type with every inherited option resolved."""

    model_config = ConfigDict(frozen=True)

    name: str
    table: str
    pk: str
    ancestors: tuple[str, ...]                  # self first, root last
    type_field: str | None = None
    relationships: tuple[Relationship, ...] = ()
    extra_associations: tuple[str, ...] = ()
    natural_key: tuple[str, ...] = ()
    preserve_identity: bool = False

    def relationship(self, name: str) -> Relationship | None:
        """Find a relationship by name."""
        for rel in self.relationships:
            if rel.name == name:
                return rel
        return None

    def relationships_of(self, kind: str) -> list[Relationship]:
        """All relationships of one kind, in declaration order."""
        return [rel for rel in self.relationships if rel.kind == kind]

    @property
    def belongs_to(self) -> list[Relationship]:
        return self.relationships_of("belongs_to")

    @property
    def has_one(self) -> list[Relationship]:
        return self.relationships_of("has_one")

    @property
    def foreign_keys(self) -> dict[str, str]:
        """Map of ``belongs_to`` FK column -> associated type name."""
        return {rel.foreign_key: rel.type for rel in self.belongs_to}


class TypeRegistry(Mapping):
    """Read-only mapping of type name to ``ResolvedType``."""

    def __init__(self, types: dict[str, ResolvedType]) -> None:
        self._types = MappingProxyType(dict(types))

    def __getitem__(self, name: str) -> ResolvedType:
        try:
            return self._types[name]
        except KeyError:
            raise UnknownTypeError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def get(self, name: str, default: Any = None) -> Any:
        return self._types.get(name, default)

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def record_type(self, type_name: str, row: Mapping[str, Any]) -> str:
        """Concrete type for a row read under ``type_name``.

        When the type has a discriminator column and the row names a known
        subtype of ``type_name``, the subtype is returned.
        """
        resolved = self[type_name]
        if resolved.type_field:
            concrete = row.get(resolved.type_field)
            if concrete in self._types and type_name in self._types[concrete].ancestors:
                return concrete
        return type_name


class ReplicationSchema(BaseModel):
    """Declared record types, resolved into a ``TypeRegistry``."""

    types: list[TypeDef] = Field(default_factory=list)

    def resolve(self) -> TypeRegistry:
        """Validate declarations and resolve inheritance.

        Raises:
            SchemaError: On duplicate or unknown type names, inheritance
                cycles, incomplete many-to-many declarations, or
                ``extra_associations`` naming undeclared relationships.
        """
        defs: dict[str, TypeDef] = {}
        for type_def in self.types:
            if type_def.name in defs:
                raise SchemaError(f"Duplicate type declaration: {type_def.name}")
            defs[type_def.name] = type_def

        resolved: dict[str, ResolvedType] = {}
        for name in defs:
            _resolve_type(name, defs, resolved, ())

        for resolved_type in resolved.values():
            for rel in resolved_type.relationships:
                if rel.type not in resolved:
                    raise SchemaError(
                        f"{resolved_type.name}#{rel.name} references unknown type '{rel.type}'"
                    )
            for name in resolved_type.extra_associations:
                if resolved_type.relationship(name) is None:
                    raise SchemaError(
                        f"{resolved_type.name}: extra association '{name}' is not declared"
                    )

        return TypeRegistry(resolved)


def _resolve_type(
    name: str,
    defs: dict[str, TypeDef],
    resolved: dict[str, ResolvedType],
    chain: tuple[str, ...],
) -> ResolvedType:
    """Resolve one type, resolving its parent first."""
    if name in resolved:
        return resolved[name]
    if name in chain:
        raise SchemaError(f"Inheritance cycle: {' -> '.join(chain + (name,))}")
    if name not in defs:
        raise SchemaError(f"{chain[-1]} inherits from unknown type '{name}'")

    type_def = defs[name]
    parent = None
    if type_def.inherits:
        parent = _resolve_type(type_def.inherits, defs, resolved, chain + (name,))

    relationships: dict[str, Relationship] = {}
    if parent is not None:
        relationships.update((rel.name, rel) for rel in parent.relationships)
    for rel in type_def.relationships:
        relationships[rel.name] = _with_defaults(name, rel)

    extra = list(parent.extra_associations) if parent else []
    for assoc in type_def.extra_associations:
        if assoc not in extra:
            extra.append(assoc)

    if type_def.natural_key is not None:
        natural_key = tuple(type_def.natural_key)
    else:
        natural_key = parent.natural_key if parent else ()

    if type_def.preserve_identity is not None:
        preserve_identity = type_def.preserve_identity
    else:
        preserve_identity = parent.preserve_identity if parent else False

    result = ResolvedType(
        name=name,
        table=type_def.table or (parent.table if parent else name),
        pk=type_def.pk or (parent.pk if parent else "id"),
        ancestors=(name,) + (parent.ancestors if parent else ()),
        type_field=type_def.type_field or (parent.type_field if parent else None),
        relationships=tuple(relationships.values()),
        extra_associations=tuple(extra),
        natural_key=natural_key,
        preserve_identity=preserve_identity,
    )
    resolved[name] = result
    return result


def _with_defaults(owner: str, rel: Relationship) -> Relationship:
    """Fill in default foreign key columns for a relationship."""
    updates: dict[str, Any] = {}
    if rel.foreign_key is None:
        if rel.kind == "belongs_to":
            updates["foreign_key"] = f"{rel.name}_id"
        else:
            updates["foreign_key"] = f"{snake_case(owner)}_id"
    if rel.kind == "many_to_many":
        if not rel.through:
            raise SchemaError(f"{owner}#{rel.name}: many_to_many requires 'through'")
        if rel.association_foreign_key is None:
            updates["association_foreign_key"] = f"{snake_case(rel.type)}_id"
    return rel.model_copy(update=updates) if updates else rel
