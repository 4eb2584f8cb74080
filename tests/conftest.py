"""Shared fixtures: an in-memory ``DatabaseClient`` and a small blog schema."""

import copy
from contextlib import asynccontextmanager
from typing import Any

import pytest

from db_replicator.replication.schema import (
    Relationship,
    ReplicationSchema,
    TypeDef,
    TypeRegistry,
)


class InMemoryClient:
    """Dict-of-lists implementation of the ``DatabaseClient`` protocol.

    Rows get an auto-incremented ``id`` on insert unless the table is a
    join table or the row already carries one. ``transaction()`` snapshots
    every table and restores the snapshot on error or for rollback-only
    blocks.

    Args:
        tables: Initial rows per table.
        join_tables: Tables whose rows have no ``id`` column.
        fail_on_insert: ``(table, n)`` -- the n-th insert into ``table``
            (1-based) raises ``RuntimeError``.
        fail_on_select: Table whose ``select`` raises ``RuntimeError``.
        malformed: Tables whose ``select`` returns a dict instead of rows.
    """

    def __init__(
        self,
        tables: dict[str, list[dict]] | None = None,
        join_tables: set[str] | None = None,
        fail_on_insert: tuple[str, int] | None = None,
        fail_on_select: str | None = None,
        malformed: set[str] | None = None,
    ) -> None:
        self.tables: dict[str, list[dict]] = copy.deepcopy(tables or {})
        self.join_tables = set(join_tables or ())
        self.fail_on_insert = fail_on_insert
        self.fail_on_select = fail_on_select
        self.malformed = set(malformed or ())
        self.selects: list[tuple[str, dict]] = []
        self.inserts: list[tuple[str, dict, bool]] = []
        self.updates: list[tuple[str, dict, dict, bool]] = []
        self.executed: list[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self._insert_counts: dict[str, int] = {}
        self._in_transaction = False

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def _next_id(self, table: str) -> int:
        ids = [row["id"] for row in self.rows(table) if isinstance(row.get("id"), int)]
        return max(ids, default=0) + 1

    @staticmethod
    def _matches(row: dict, filters: dict[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        self.selects.append((table, dict(filters or {})))
        if table == self.fail_on_select:
            raise RuntimeError(f"injected failure reading {table}")
        if table in self.malformed:
            return {"error": "not a row list"}  # type: ignore[return-value]
        matched = [row for row in self.rows(table) if self._matches(row, filters)]
        if order_by:
            matched.sort(key=lambda row: row.get(order_by))
        if columns.strip() == "*":
            return [dict(row) for row in matched]
        names = [c.strip() for c in columns.split(",")]
        return [{name: row.get(name) for name in names} for row in matched]

    async def insert(self, table: str, data: dict, bypass_hooks: bool = False) -> dict:
        count = self._insert_counts.get(table, 0) + 1
        self._insert_counts[table] = count
        if self.fail_on_insert == (table, count):
            raise RuntimeError(f"injected failure inserting into {table}")

        row = dict(data)
        if table not in self.join_tables and row.get("id") is None:
            row["id"] = self._next_id(table)
        self.rows(table).append(row)
        self.inserts.append((table, dict(data), bypass_hooks))
        return dict(row)

    async def update(
        self,
        table: str,
        data: dict,
        filters: dict[str, Any],
        bypass_hooks: bool = False,
    ) -> dict:
        matched = [row for row in self.rows(table) if self._matches(row, filters)]
        if not matched:
            raise ValueError(f"No rows matched filters: {filters}")
        for row in matched:
            row.update(data)
        self.updates.append((table, dict(data), dict(filters), bypass_hooks))
        return dict(matched[0])

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        self.tables[table] = [
            row for row in self.rows(table) if not self._matches(row, filters)
        ]

    async def execute(self, sql: str, params: dict | None = None) -> None:
        self.executed.append(sql)

    @asynccontextmanager
    async def transaction(self, rollback_only: bool = False):
        if self._in_transaction:
            raise RuntimeError("A transaction is already open on this adapter")
        snapshot = copy.deepcopy(self.tables)
        self._in_transaction = True
        try:
            yield
        except BaseException:
            self.tables = snapshot
            self.rollbacks += 1
            raise
        else:
            if rollback_only:
                self.tables = snapshot
                self.rollbacks += 1
            else:
                self.commits += 1
        finally:
            self._in_transaction = False

    async def close(self) -> None:
        self.closed = True


# ============================================================================
# Blog schema
# ============================================================================


def blog_schema() -> ReplicationSchema:
    """Author -> Profile/Post -> Comment, Post <-> Tag via post_tags."""
    return ReplicationSchema(types=[
        TypeDef(
            name="Author",
            table="authors",
            natural_key=["email"],
            relationships=[
                Relationship(name="profile", kind="has_one", type="Profile"),
                Relationship(name="posts", kind="has_many", type="Post"),
            ],
            extra_associations=["posts"],
        ),
        TypeDef(
            name="Profile",
            table="profiles",
            relationships=[
                Relationship(name="author", kind="belongs_to", type="Author"),
            ],
        ),
        TypeDef(
            name="Post",
            table="posts",
            relationships=[
                Relationship(name="author", kind="belongs_to", type="Author"),
                Relationship(name="comments", kind="has_many", type="Comment"),
                Relationship(name="tags", kind="many_to_many", type="Tag", through="post_tags"),
            ],
            extra_associations=["comments", "tags"],
        ),
        TypeDef(
            name="Comment",
            table="comments",
            relationships=[
                Relationship(name="post", kind="belongs_to", type="Post"),
                Relationship(name="author", kind="belongs_to", type="Author"),
            ],
        ),
        TypeDef(name="Tag", table="tags", natural_key=["name"]),
    ])


BLOG_ROWS = {
    "authors": [{"id": 1, "name": "Ada", "email": "ada@example.com"}],
    "profiles": [{"id": 5, "author_id": 1, "bio": "Analyst"}],
    "posts": [
        {"id": 10, "author_id": 1, "title": "Notes"},
        {"id": 11, "author_id": 1, "title": "Engines"},
    ],
    "comments": [{"id": 100, "post_id": 10, "author_id": 1, "body": "Nice"}],
    "tags": [{"id": 1, "name": "math"}, {"id": 2, "name": "history"}],
    "post_tags": [
        {"post_id": 10, "tag_id": 1},
        {"post_id": 10, "tag_id": 2},
        {"post_id": 11, "tag_id": 2},
    ],
}


@pytest.fixture
def registry() -> TypeRegistry:
    return blog_schema().resolve()


@pytest.fixture
def source() -> InMemoryClient:
    return InMemoryClient(BLOG_ROWS, join_tables={"post_tags"})


@pytest.fixture
def dest() -> InMemoryClient:
    """Destination that already holds rows, so local ids differ from source ids."""
    return InMemoryClient(
        {
            "authors": [
                {"id": 1, "name": "Grace", "email": "grace@example.com"},
                {"id": 2, "name": "Linus", "email": "linus@example.com"},
            ],
            "posts": [{"id": 1, "author_id": 1, "title": "Compilers"}],
        },
        join_tables={"post_tags"},
    )
