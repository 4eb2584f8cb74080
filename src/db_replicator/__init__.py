"""db-replicator: Dump a record graph from one database and load it into another.

Walks the relationships of a set of root records, writes them and every
record they depend on as an ordered tuple stream, and loads that stream
into another database in one transaction with foreign keys remapped.

Usage:
    from db_replicator import Dumper, Loader, ReplicationSchema, TypeDef
    from db_replicator import AsyncPostgresAdapter, get_adapter
    from db_replicator import load_replicator_config, ReplicatorConfig
"""

__version__ = "0.1.0"

# Adapters
from db_replicator.adapters.base import DatabaseClient
from db_replicator.adapters.postgres import AsyncPostgresAdapter

# Config
from db_replicator.config.loader import load_replicator_config
from db_replicator.config.models import DatabaseProfile, ReplicatorConfig

# Factory
from db_replicator.factory import (
    ProfileNotFoundError,
    get_adapter,
    get_registry,
    resolve_url,
)

# Replication
from db_replicator.replication import (
    Dumper,
    IdentityMap,
    Loader,
    LoadSummary,
    Record,
    Reference,
    ReferenceList,
    Relationship,
    ReplicantTuple,
    ReplicationError,
    ReplicationSchema,
    SpecRegistry,
    TupleWriter,
    TypeDef,
    TypeRegistry,
    fetch_record,
    read_tuples,
    validate_stream,
)

# Schema reflection
from db_replicator.schema import SchemaIntrospector, build_schema

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_replicator_config",
    "DatabaseProfile",
    "ReplicatorConfig",
    # Factory
    "get_adapter",
    "get_registry",
    "ProfileNotFoundError",
    "resolve_url",
    # Replication
    "Dumper",
    "Loader",
    "LoadSummary",
    "IdentityMap",
    "SpecRegistry",
    "ReplicationSchema",
    "TypeDef",
    "Relationship",
    "TypeRegistry",
    "Record",
    "Reference",
    "ReferenceList",
    "ReplicantTuple",
    "ReplicationError",
    "TupleWriter",
    "read_tuples",
    "validate_stream",
    "fetch_record",
    # Schema reflection
    "SchemaIntrospector",
    "build_schema",
]
