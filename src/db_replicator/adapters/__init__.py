"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async PostgreSQL adapter
used as the storage collaborator of the dumper and loader.

Usage:
    from db_replicator.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from db_replicator.adapters.base import DatabaseClient
from db_replicator.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
]
