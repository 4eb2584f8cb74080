"""Storage protocol shared by the dumper and the loader.

``DatabaseClient`` is everything the replication engine needs from a
database: equality reads, writes that can skip triggers, deletes, and a
transaction scope. Every method is a coroutine.

Usage:
    from db_replicator.adapters.base import DatabaseClient

    async def copy_author(client: DatabaseClient) -> None:
        async with client.transaction():
            row = await client.insert("authors", {"name": "Ada"}, bypass_hooks=True)
            posts = await client.select("posts", "*", filters={"author_id": row["id"]})
        await client.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Async row storage used to read and write record graphs.

    Rows are plain dicts keyed by column name.  Calls made inside
    ``transaction()`` share its unit of work; calls made outside it are
    committed one by one.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Read the rows of ``table`` whose columns equal ``filters``.

        Args:
            table: Table to read.
            columns: ``"*"`` or a comma-separated column list.
            filters: Column -> value; all must match.  A None value
                matches NULL.
            order_by: Column to sort by.

        Returns:
            One dict per matching row; an empty list when none match.

        Example:
            ids = await client.select(
                "post_tags",
                "tag_id",
                filters={"post_id": 10},
                order_by="tag_id",
            )
        """
        ...

    async def insert(self, table: str, data: dict, bypass_hooks: bool = False) -> dict:
        """Insert one row and return it as stored.

        Args:
            table: Target table.
            data: Column -> value.  May be empty, in which case every
                column takes its default.
            bypass_hooks: Skip user triggers for this write.

        Returns:
            The stored row, including generated keys and defaults.

        Raises:
            Exception: On a constraint violation.
        """
        ...

    async def update(
        self,
        table: str,
        data: dict,
        filters: dict[str, Any],
        bypass_hooks: bool = False,
    ) -> dict:
        """Update the rows matching ``filters`` and return the first of them.

        Args:
            table: Target table.
            data: Column -> new value.
            filters: Column -> value; all must match.
            bypass_hooks: Skip user triggers for this write.

        Returns:
            The first updated row.

        Raises:
            Exception: If nothing matches ``filters``.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete the rows matching ``filters``.

        Example:
            await client.delete("post_tags", {"post_id": 10})
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Run a raw statement with named ``params``.

        Raises:
            NotImplementedError: If the storage has no SQL interface.
        """
        ...

    def transaction(self, rollback_only: bool = False) -> AbstractAsyncContextManager[None]:
        """Open a unit of work shared by every call made inside it.

        Commits when the block exits normally and rolls back when it
        raises.  With ``rollback_only=True`` the work is always rolled
        back (used for dry runs).

        Example:
            async with client.transaction():
                await client.insert("authors", {"name": "Ada"})
                await client.insert("posts", {"title": "X"})
        """
        ...

    async def close(self) -> None:
        """Release connections held by the client."""
        ...
