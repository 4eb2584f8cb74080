"""Dump a graph of records as an ordered replicant tuple stream.

The ``Dumper`` takes one or more root records and writes one
``(type, id, attributes)`` tuple per reachable record. Records referenced
through a ``belongs_to`` association are always written before the
records that reference them, and no identity is written twice.

Dumping to a list:

    dumper = Dumper(adapter, registry)
    await dumper.dump(await fetch_record(adapter, registry, "Author", 1))
    tuples = dumper.to_list()

Dumping to a stream:

    with open("dump.jsonl", "w") as f:
        writer = TupleWriter(f)
        dumper = Dumper(adapter, registry, write=writer)
        await dumper.dump(root)
        writer.close()
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

from db_replicator.adapters.base import DatabaseClient
from db_replicator.replication.associations import member_ids, read_association, read_members
from db_replicator.replication.errors import (
    AssociationShapeError,
    UnknownAssociationError,
)
from db_replicator.replication.many_to_many import relation_tuple
from db_replicator.replication.schema import Relationship, TypeRegistry
from db_replicator.replication.specs import DumpSpec
from db_replicator.replication.values import Record, Reference, ReplicantTuple

logger = logging.getLogger(__name__)

WriteFn = Callable[[str, Any, dict[str, Any]], None]


class Dumper:
    """Walk records in dependency order and write replicant tuples.

    Args:
        adapter: Storage the records (and their associations) are read from.
        registry: Resolved record types.
        write: Sink called as ``write(type, id, attributes)`` for each
            tuple. When omitted, tuples are collected and available from
            ``to_list()``.
        dump_specs: Optional type name -> custom traversal overrides.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        registry: TypeRegistry,
        write: WriteFn | None = None,
        dump_specs: Mapping[str, DumpSpec] | None = None,
    ) -> None:
        self.adapter = adapter
        self.registry = registry
        self._objects: list[ReplicantTuple] = []
        self._write = write or self._collect
        self._dump_specs = dict(dump_specs or {})
        self._memo: set[tuple[str, Any]] = set()
        self._visiting: set[tuple[str, Any]] = set()

    def _collect(self, type_name: str, record_id: Any, attributes: dict[str, Any]) -> None:
        self._objects.append(ReplicantTuple(type_name, record_id, attributes))

    def to_list(self) -> list[ReplicantTuple]:
        """Tuples dumped so far. Always empty when a custom sink was given."""
        return list(self._objects)

    def dumped(self, record: Record) -> bool:
        """Whether a tuple for ``record``'s identity has been written."""
        return record.identity in self._memo

    def write(self, type_name: str, record_id: Any, attributes: dict[str, Any]) -> None:
        """Pass one tuple to the sink."""
        logger.debug("Dumping %s[%s]", type_name, record_id)
        self._write(type_name, record_id, attributes)

    async def dump(self, *records: Record | list[Record] | None) -> None:
        """Dump records and everything they depend on.

        Accepts records, a single list or tuple of records, or None
        (skipped). Records already dumped in this session are skipped.

        Raises:
            TypeError: If an argument is not a ``Record`` or None.
        """
        if len(records) == 1 and isinstance(records[0], (list, tuple)):
            records = tuple(records[0])

        for record in records:
            if record is None:
                continue
            if not isinstance(record, Record):
                raise TypeError(f"Cannot dump a {type(record).__name__}")
            if self.dumped(record) or record.identity in self._visiting:
                continue

            spec = self._dump_specs.get(record.type)
            if spec is not None:
                await spec(self, record)
            else:
                await self.dump_record(record)

    async def dump_record(self, record: Record) -> None:
        """Generic traversal for one record.

        Dumps ``belongs_to`` targets, then the record, then ``has_one``
        targets, then each association listed in the type's
        ``extra_associations``.
        """
        resolved = self.registry[record.type]

        self._visiting.add(record.identity)
        try:
            await self._dump_associated(record, resolved.belongs_to)
        finally:
            self._visiting.discard(record.identity)

        await self.dump_object(record)
        await self._dump_associated(record, resolved.has_one)
        for name in resolved.extra_associations:
            await self.dump_association(record, name)

    async def dump_object(self, record: Record) -> None:
        """Write ``record``'s own tuple unless it was already written."""
        if self.dumped(record):
            return
        self._memo.add(record.identity)
        self.write(record.type, record.id, self.replicant_attributes(record))

    async def dump_association(self, record: Record, name: str) -> None:
        """Dump the records of one association of ``record``.

        For a many-to-many association, the synthetic relation tuple is
        written after the associated records.

        Raises:
            UnknownAssociationError: If ``name`` is not declared on the type.
        """
        rel = self.registry[record.type].relationship(name)
        if rel is None:
            raise UnknownAssociationError(record.type, name)

        if rel.kind == "many_to_many":
            await self._dump_many_to_many(record, rel)
            return

        try:
            dependent = await read_association(self.adapter, self.registry, record, name)
        except AssociationShapeError as e:
            logger.warning("%s. skipping.", e)
            return
        await self.dump(dependent)

    def replicant_attributes(self, record: Record) -> dict[str, Any]:
        """Copy of the record's attributes with ``belongs_to`` FKs tagged."""
        attributes = dict(record.attributes)
        for foreign_key, type_name in self.registry[record.type].foreign_keys.items():
            value = attributes.get(foreign_key)
            if value is not None:
                attributes[foreign_key] = Reference(type=type_name, id=value)
        return attributes

    async def _dump_many_to_many(self, record: Record, rel: Relationship) -> None:
        """Dump the members, then one relation tuple built from the same join rows."""
        try:
            ids = await member_ids(self.adapter, record, rel)
            members = await read_members(self.adapter, self.registry, record, rel, ids)
        except AssociationShapeError as e:
            logger.warning("%s. skipping.", e)
            return
        await self.dump(members)

        relation = relation_tuple(record, rel, ids)
        identity = (relation.type, relation.id)
        if identity not in self._memo:
            self._memo.add(identity)
            self.write(*relation)

    async def _dump_associated(self, record: Record, relationships: list[Relationship]) -> None:
        for rel in relationships:
            try:
                dependent = await read_association(self.adapter, self.registry, record, rel.name)
            except AssociationShapeError as e:
                logger.warning("%s. skipping.", e)
                continue
            if dependent is not None:
                await self.dump(dependent)
