"""Session-scoped mapping of dump-system identities to local records."""

from typing import Any

from db_replicator.replication.values import Record


class IdentityMap:
    """Translate ``(type, source id)`` to the local record loaded for it.

    One instance per load session. Entries are registered under the
    record's type and under every ancestor type, so a reference typed at
    a supertype still resolves.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, Any], Record] = {}

    def register(self, types: tuple[str, ...], source_id: Any, record: Record) -> Record:
        """Register ``record`` under each type name in ``types``."""
        for type_name in types:
            self._records[(type_name, source_id)] = record
        return record

    def lookup(self, type_name: str, source_id: Any) -> Record | None:
        """Return the local record for a dump-system identity, if loaded."""
        return self._records.get((type_name, source_id))

    def local_id(self, type_name: str, source_id: Any) -> Any:
        """Return the local primary key for a dump-system identity, or None."""
        record = self.lookup(type_name, source_id)
        return record.id if record is not None else None

    def __contains__(self, key: tuple[str, Any]) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)
