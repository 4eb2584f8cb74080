"""PostgreSQL relationship reflection via information_schema.

This module queries the live database for what the replicator needs to
walk a record graph:
- Tables and their primary key columns
- Single-column foreign key constraints

``build_schema()`` turns those into a ``ReplicationSchema`` with one record
type per table, so a database can be dumped without hand-written type
declarations.

Uses psycopg (v3) for PostgreSQL connections.
"""

import logging

import psycopg
from psycopg import Connection

from db_replicator.replication.schema import Relationship, ReplicationSchema, TypeDef
from db_replicator.schema.models import ForeignKeySchema

logger = logging.getLogger(__name__)


class SchemaIntrospector:
    """Introspects PostgreSQL tables, primary keys and foreign keys.

    Usage:
        with SchemaIntrospector(database_url) as introspector:
            schema = build_schema(
                introspector.get_tables(),
                introspector.get_primary_keys(),
                introspector.get_foreign_keys(),
            )
    """

    # Tables to exclude from introspection (system tables)
    EXCLUDED_TABLES = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(self, database_url: str, schema_name: str = "public"):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL
            schema_name: PostgreSQL schema to introspect (default: public)
        """
        self._database_url = database_url
        self._schema_name = schema_name
        self._conn: Connection | None = None

    def __enter__(self) -> "SchemaIntrospector":
        """Context manager entry - opens connection."""
        # Append connect_timeout if not already in URL
        url = self._database_url
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout=10"

        self._conn = psycopg.connect(url)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _cursor(self):
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use with statement.")
        return self._conn.cursor()

    def get_tables(self) -> list[str]:
        """Get all base table names in the schema."""
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        with self._cursor() as cur:
            cur.execute(query, (self._schema_name,))
            return [row[0] for row in cur.fetchall() if row[0] not in self.EXCLUDED_TABLES]

    def get_primary_keys(self) -> dict[str, list[str]]:
        """Get primary key columns per table, in key order."""
        query = """
            SELECT tc.table_name, kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            WHERE tc.table_schema = %s
              AND tc.constraint_type = 'PRIMARY KEY'
            ORDER BY tc.table_name, kcu.ordinal_position
        """
        with self._cursor() as cur:
            cur.execute(query, (self._schema_name,))
            pks: dict[str, list[str]] = {}
            for table_name, column_name in cur.fetchall():
                pks.setdefault(table_name, []).append(column_name)
            return pks

    def get_foreign_keys(self) -> list[ForeignKeySchema]:
        """Get single-column foreign keys.

        Composite foreign keys cannot be expressed as a ``belongs_to`` and
        are skipped with a warning.
        """
        query = """
            SELECT
                tc.constraint_name,
                tc.table_name,
                kcu.column_name,
                ccu.table_name AS references_table,
                ccu.column_name AS references_column
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.table_schema = ccu.table_schema
            WHERE tc.table_schema = %s
              AND tc.constraint_type = 'FOREIGN KEY'
            ORDER BY tc.table_name, tc.constraint_name, kcu.ordinal_position
        """
        with self._cursor() as cur:
            cur.execute(query, (self._schema_name,))
            rows = cur.fetchall()

        by_constraint: dict[tuple[str, str], list[tuple]] = {}
        for name, table, column, ref_table, ref_column in rows:
            by_constraint.setdefault((table, name), []).append((column, ref_table, ref_column))

        foreign_keys: list[ForeignKeySchema] = []
        for (table, name), columns in by_constraint.items():
            if len({c[0] for c in columns}) != 1:
                logger.warning("Skipping composite foreign key %s on %s", name, table)
                continue
            column, ref_table, ref_column = columns[0]
            foreign_keys.append(ForeignKeySchema(
                table=table,
                column=column,
                references_table=ref_table,
                references_column=ref_column,
                name=name,
            ))
        return foreign_keys


def build_schema(
    tables: list[str],
    pks: dict[str, list[str]],
    foreign_keys: list[ForeignKeySchema],
) -> ReplicationSchema:
    """Build record type declarations from reflected constraints.

    Each table with a single-column primary key becomes a type named after
    the table. Each foreign key becomes a ``belongs_to`` on the referencing
    type (named after the column minus ``_id``) and a ``has_many`` on the
    referenced type (named after the referencing table). A table without a
    single-column primary key that has exactly two foreign keys is treated
    as a join table and yields a ``many_to_many`` in both directions.

    Args:
        tables: Table names.
        pks: Primary key columns per table.
        foreign_keys: Single-column foreign keys.

    Returns:
        Unresolved ``ReplicationSchema``.
    """
    type_defs: dict[str, TypeDef] = {}
    for table in tables:
        key = pks.get(table, [])
        if len(key) == 1:
            type_defs[table] = TypeDef(name=table, table=table, pk=key[0])

    for table in tables:
        if table in type_defs:
            continue
        table_fks = [fk for fk in foreign_keys if fk.table == table]
        if len(table_fks) == 2 and all(fk.references_table in type_defs for fk in table_fks):
            left, right = table_fks
            _add(type_defs[left.references_table], Relationship(
                name=_unique_name(type_defs[left.references_table], right.references_table),
                kind="many_to_many",
                type=right.references_table,
                through=table,
                foreign_key=left.column,
                association_foreign_key=right.column,
            ))
            _add(type_defs[right.references_table], Relationship(
                name=_unique_name(type_defs[right.references_table], left.references_table),
                kind="many_to_many",
                type=left.references_table,
                through=table,
                foreign_key=right.column,
                association_foreign_key=left.column,
            ))
        else:
            logger.debug("Skipping table without a single-column primary key: %s", table)

    for fk in foreign_keys:
        owner = type_defs.get(fk.table)
        target = type_defs.get(fk.references_table)
        if owner is None or target is None:
            continue
        stem = fk.column[:-3] if fk.column.endswith("_id") else fk.column
        _add(owner, Relationship(
            name=_unique_name(owner, stem),
            kind="belongs_to",
            type=target.name,
            foreign_key=fk.column,
        ))
        _add(target, Relationship(
            name=_unique_name(target, fk.table),
            kind="has_many",
            type=owner.name,
            foreign_key=fk.column,
        ))

    return ReplicationSchema(types=list(type_defs.values()))


def _add(type_def: TypeDef, rel: Relationship) -> None:
    type_def.relationships.append(rel)


def _unique_name(type_def: TypeDef, name: str) -> str:
    """``name``, suffixed with a counter if the type already uses it."""
    taken = {rel.name for rel in type_def.relationships}
    candidate = name
    n = 2
    while candidate in taken:
        candidate = f"{name}_{n}"
        n += 1
    return candidate
