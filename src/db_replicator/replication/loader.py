"""Load replicant tuples into the local database.

The ``Loader`` reads ``(type, id, attributes)`` tuples and creates (or
updates) local records inside one transaction.

Tuples are expected to arrive in dependency order, so a record referenced
through a foreign key precedes the record that references it. The Loader
keeps an identity map from dump-system identities to local records and
uses it to rewrite every tagged foreign key to its local value.

Usage:
    from db_replicator.replication.loader import Loader

    loader = Loader(adapter, registry)
    with open("dump.jsonl") as f:
        summary = await loader.read(f)
    summary.total
"""

import inspect
import logging
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TextIO

from pydantic import BaseModel, Field

from db_replicator.adapters.base import DatabaseClient
from db_replicator.replication.associations import record_from_row
from db_replicator.replication.codec import read_tuples
from db_replicator.replication.keymap import IdentityMap
from db_replicator.replication.many_to_many import MANY_TO_MANY_TYPE, load_relation
from db_replicator.replication.schema import ResolvedType, TypeRegistry
from db_replicator.replication.specs import LoadSpec
from db_replicator.replication.values import Record, Reference, ReferenceList, ReplicantTuple

logger = logging.getLogger(__name__)

FOREIGN_KEY_PATTERN = re.compile(r"^(.*)_id$")

_UNSET = object()


class TypeCounts(BaseModel):
    """Per-type load counts."""

    inserted: int = 0
    updated: int = 0


class LoadSummary(BaseModel):
    """Result of ``Loader.read()``."""

    dry_run: bool = False
    counts: dict[str, TypeCounts] = Field(default_factory=dict)
    relations: int = 0
    warnings: int = 0

    @property
    def total(self) -> int:
        """Records inserted or updated, across all types."""
        return sum(c.inserted + c.updated for c in self.counts.values())


class Loader:
    """Materialize a tuple stream as local records.

    Args:
        adapter: Storage records are written to.
        registry: Resolved record types.
        load_specs: Optional type name -> existing-record lookup overrides.
            A load-spec is awaited as ``spec(loader, attributes)`` and
            returns the local record to update, or None to insert.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        registry: TypeRegistry,
        load_specs: Mapping[str, LoadSpec] | None = None,
    ) -> None:
        self.adapter = adapter
        self.registry = registry
        self.keymap = IdentityMap()
        self._load_specs = dict(load_specs or {})
        self._warned: set[tuple[str, str]] = set()
        self._summary = LoadSummary()

    async def read(
        self,
        stream: TextIO | Iterable[ReplicantTuple],
        callback: Callable[[Record], Any] | None = None,
        dry_run: bool = False,
    ) -> LoadSummary:
        """Load every tuple of ``stream`` in a single transaction.

        Either everything commits or nothing does: a decode error, an
        unknown type, or a storage failure rolls back all records written
        by this call and propagates.

        The identity map starts empty on every call, so ids loaded by an
        earlier (possibly rolled back) call are never reused.

        Args:
            stream: A JSON Lines text stream, or an iterable of
                ``ReplicantTuple`` objects.
            callback: Optional function (or coroutine function) called
                with each loaded local record.
            dry_run: Load everything, then roll back.

        Returns:
            ``LoadSummary`` with per-type counts for this call.
        """
        self.keymap = IdentityMap()
        self._warned = set()
        self._summary = LoadSummary(dry_run=dry_run)
        tuples = _iter_tuples(stream)

        async with self.adapter.transaction(rollback_only=dry_run):
            for type_name, source_id, attributes in tuples:
                record = await self.load(type_name, source_id, attributes)
                if callback is not None and record is not None:
                    result = callback(record)
                    if inspect.isawaitable(result):
                        await result

        return self._summary

    async def load(self, type_name: str, source_id: Any, attributes: dict[str, Any]) -> Record | None:
        """Load one tuple and register it in the identity map.

        Returns:
            The local record, or None when a synthetic many-to-many tuple
            had to be skipped.

        Raises:
            UnknownTypeError: If ``type_name`` is not a registered type.
        """
        if type_name == MANY_TO_MANY_TYPE:
            record = await load_relation(self, source_id, attributes)
            if record is not None:
                self._summary.relations += 1
                self.keymap.register((MANY_TO_MANY_TYPE,), source_id, record)
            return record

        resolved = self.registry[type_name]
        data = self._translate(resolved, attributes)

        existing = await self._find_existing(resolved, attributes, data)

        source_pk = attributes.get(resolved.pk)
        if resolved.preserve_identity and source_pk is not None:
            data[resolved.pk] = source_pk

        counts = self._summary.counts.setdefault(type_name, TypeCounts())
        if existing is not None:
            if data:
                row = await self.adapter.update(
                    self.registry[existing.type].table,
                    data=data,
                    filters={self.registry[existing.type].pk: existing.id},
                    bypass_hooks=True,
                )
            else:
                row = existing.attributes
            counts.updated += 1
        else:
            row = await self.adapter.insert(resolved.table, data=data, bypass_hooks=True)
            counts.inserted += 1

        record = Record(type=type_name, id=row[resolved.pk], attributes=dict(row))
        logger.debug("Loaded %s[%s] as %s", type_name, source_id, record.id)

        self.keymap.register(resolved.ancestors, source_id, record)
        return record

    # ------------------------------------------------------------------
    # Helpers for load-specs
    # ------------------------------------------------------------------

    def lookup(self, type_name: str, source_id: Any) -> Record | None:
        """Local record previously loaded for a dump-system identity."""
        return self.keymap.lookup(type_name, source_id)

    async def find_first(self, type_name: str, **filters: Any) -> Record | None:
        """First local record of ``type_name`` matching all ``filters``."""
        resolved = self.registry[type_name]
        rows = await self.adapter.select(resolved.table, columns="*", filters=filters)
        if not rows:
            return None
        return record_from_row(self.registry, type_name, rows[0])

    async def destroy(self, record: Record) -> None:
        """Delete a local record."""
        resolved = self.registry[record.type]
        await self.adapter.delete(resolved.table, filters={resolved.pk: record.id})

    def warn(self, message: str) -> None:
        """Log a load anomaly and count it in the summary."""
        logger.warning("%s", message)
        self._summary.warnings += 1

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _translate(self, resolved: ResolvedType, attributes: dict[str, Any]) -> dict[str, Any]:
        """Attribute dict with foreign keys rewritten to local ids.

        The primary key is left out; unresolved references are left out.
        """
        foreign_keys = resolved.foreign_keys
        data: dict[str, Any] = {}
        for key, value in attributes.items():
            if key == resolved.pk:
                continue
            if value is None:
                data[key] = None
            elif isinstance(value, Reference):
                local = self._resolve(resolved.name, key, value.type, value.id)
                if local is not _UNSET:
                    data[key] = local
            elif isinstance(value, ReferenceList):
                data[key] = [
                    local for local in (
                        self._resolve(resolved.name, key, value.type, member)
                        for member in value.ids
                    )
                    if local is not _UNSET
                ]
            elif key in foreign_keys:
                local = self._resolve(resolved.name, key, foreign_keys[key], value)
                if local is not _UNSET:
                    data[key] = local
            elif FOREIGN_KEY_PATTERN.match(key):
                if (resolved.name, key) not in self._warned:
                    self._warned.add((resolved.name, key))
                    self.warn(
                        f"{resolved.name}.{key} looks like a foreign key but has no association."
                    )
                data[key] = value
            else:
                data[key] = value
        return data

    def _resolve(self, type_name: str, key: str, ref_type: str, ref_id: Any) -> Any:
        record = self.keymap.lookup(ref_type, ref_id)
        if record is None:
            self.warn(f"{type_name}.{key} referencing {ref_type}[{ref_id}] not found in keymap")
            return _UNSET
        return record.id

    async def _find_existing(
        self,
        resolved: ResolvedType,
        attributes: dict[str, Any],
        data: dict[str, Any],
    ) -> Record | None:
        """Local record to update instead of inserting, if any.

        A registered load-spec wins; otherwise the natural key is matched
        against the translated attribute values.
        """
        spec = self._load_specs.get(resolved.name)
        if spec is not None:
            return await spec(self, attributes)
        if not resolved.natural_key:
            return None
        conditions = {}
        for field in resolved.natural_key:
            if field in data:
                conditions[field] = data[field]
            elif field == resolved.pk:
                conditions[field] = attributes.get(field)
            else:
                conditions[field] = None
        return await self.find_first(resolved.name, **conditions)


def _iter_tuples(stream: TextIO | Iterable[ReplicantTuple]) -> Iterable[ReplicantTuple]:
    """Decode a text stream; pass tuple iterables through unchanged."""
    if hasattr(stream, "read"):
        return read_tuples(stream)
    return stream
