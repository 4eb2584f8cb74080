"""Association reads against a ``DatabaseClient``.

Turns relationship declarations into ``select`` calls and wraps the
returned rows as ``Record`` objects. Rows of an unexpected shape raise
``AssociationShapeError`` so the caller can decide whether to skip.

Usage:
    from db_replicator.replication.associations import fetch_record, read_association

    author = await fetch_record(adapter, registry, "Author", 1)
    posts = await read_association(adapter, registry, author, "posts")
"""

from collections.abc import Mapping
from typing import Any

from db_replicator.adapters.base import DatabaseClient
from db_replicator.replication.errors import (
    AssociationShapeError,
    UnknownAssociationError,
)
from db_replicator.replication.schema import (
    SINGULAR_KINDS,
    Relationship,
    ResolvedType,
    TypeRegistry,
)
from db_replicator.replication.values import Record


def record_from_row(registry: TypeRegistry, type_name: str, row: Mapping[str, Any]) -> Record:
    """Wrap a storage row as a ``Record`` of its concrete type."""
    concrete = registry.record_type(type_name, row)
    pk = registry[concrete].pk
    if pk not in row:
        raise AssociationShapeError(f"{concrete} row has no '{pk}' column")
    return Record(type=concrete, id=row[pk], attributes=dict(row))


async def fetch_record(
    adapter: DatabaseClient,
    registry: TypeRegistry,
    type_name: str,
    record_id: Any,
) -> Record | None:
    """Read one record by primary key. Returns None when absent."""
    resolved = registry[type_name]
    rows = await _select_rows(adapter, resolved, {resolved.pk: record_id}, type_name)
    return _single(registry, resolved, rows, type_name)


async def read_association(
    adapter: DatabaseClient,
    registry: TypeRegistry,
    record: Record,
    name: str,
) -> Record | list[Record] | None:
    """Read the target(s) of ``record``'s association ``name``.

    Singular associations (``belongs_to``, ``has_one``) return a record or
    None; collections return a list.

    Raises:
        UnknownAssociationError: If the type declares no such association.
        AssociationShapeError: If storage returns rows of an unexpected shape.
    """
    owner = registry[record.type]
    rel = owner.relationship(name)
    if rel is None:
        raise UnknownAssociationError(record.type, name)

    target = registry[rel.type]
    label = f"{record.type}#{rel.name} {rel.kind}"

    if rel.kind == "belongs_to":
        fk_value = record.attributes.get(rel.foreign_key)
        if fk_value is None:
            return None
        rows = await _select_rows(adapter, target, {target.pk: fk_value}, label)
    elif rel.kind == "many_to_many":
        return await read_members(adapter, registry, record, rel, await member_ids(adapter, record, rel))
    else:
        filters: dict[str, Any] = {rel.foreign_key: record.id}
        if target.type_field and len(target.ancestors) > 1:
            filters[target.type_field] = target.name
        rows = await _select_rows(adapter, target, filters, label)

    if rel.kind in SINGULAR_KINDS:
        return _single(registry, target, rows, label)
    return [record_from_row(registry, rel.type, row) for row in rows]


async def member_ids(adapter: DatabaseClient, record: Record, rel: Relationship) -> list[Any]:
    """Snapshot of the associated ids in a many-to-many join table."""
    rows = await adapter.select(
        rel.through,
        columns=rel.association_foreign_key,
        filters={rel.foreign_key: record.id},
        order_by=rel.association_foreign_key,
    )
    if not isinstance(rows, list):
        raise AssociationShapeError(
            f"{record.type}#{rel.name} join table unexpectedly returned a {type(rows).__name__}"
        )
    return [row[rel.association_foreign_key] for row in rows]


async def read_members(
    adapter: DatabaseClient,
    registry: TypeRegistry,
    record: Record,
    rel: Relationship,
    ids: list[Any],
) -> list[Record]:
    """Member records of a many-to-many association, one per id in ``ids``.

    ``ids`` comes from ``member_ids`` so the caller can reuse the same
    join-table snapshot for the relation tuple. Ids whose row is gone are
    left out.
    """
    target = registry[rel.type]
    label = f"{record.type}#{rel.name} {rel.kind}"
    rows: list[Mapping[str, Any]] = []
    for member_id in ids:
        rows.extend(await _select_rows(adapter, target, {target.pk: member_id}, label))
    return [record_from_row(registry, rel.type, row) for row in rows]


async def _select_rows(
    adapter: DatabaseClient,
    target: ResolvedType,
    filters: dict[str, Any],
    label: str,
) -> list[Mapping[str, Any]]:
    """Select full rows from ``target``'s table, checking the result shape."""
    rows = await adapter.select(target.table, columns="*", filters=filters)
    if not isinstance(rows, list):
        raise AssociationShapeError(
            f"{label} association unexpectedly returned a {type(rows).__name__}"
        )
    for row in rows:
        if not isinstance(row, Mapping):
            raise AssociationShapeError(
                f"{label} association unexpectedly returned a {type(row).__name__} row"
            )
    return rows


def _single(
    registry: TypeRegistry,
    target: ResolvedType,
    rows: list[Mapping[str, Any]],
    label: str,
) -> Record | None:
    if not rows:
        return None
    if len(rows) > 1:
        raise AssociationShapeError(
            f"{label} association unexpectedly returned {len(rows)} rows"
        )
    return record_from_row(registry, target.name, rows[0])
