"""Graph replication: dump a record graph, load it elsewhere.

The ``Dumper`` writes an ordered, de-duplicated stream of
``(type, id, attributes)`` tuples for a set of root records and everything
they depend on. The ``Loader`` reads such a stream into another database
in one transaction, translating foreign keys through an identity map.

Usage:
    from db_replicator.replication import Dumper, Loader, ReplicationSchema
    from db_replicator.replication import TupleWriter, fetch_record
"""

from db_replicator.replication.associations import fetch_record, read_association
from db_replicator.replication.codec import (
    TupleWriter,
    read_tuples,
    validate_stream,
)
from db_replicator.replication.dumper import Dumper
from db_replicator.replication.errors import (
    AssociationShapeError,
    ReplicationError,
    SchemaError,
    StreamFormatError,
    UnknownAssociationError,
    UnknownTypeError,
)
from db_replicator.replication.keymap import IdentityMap
from db_replicator.replication.loader import Loader, LoadSummary
from db_replicator.replication.many_to_many import MANY_TO_MANY_TYPE
from db_replicator.replication.schema import (
    Relationship,
    ReplicationSchema,
    ResolvedType,
    TypeDef,
    TypeRegistry,
)
from db_replicator.replication.specs import SpecRegistry
from db_replicator.replication.values import (
    Record,
    Reference,
    ReferenceList,
    ReplicantTuple,
)

__all__ = [
    "Dumper",
    "Loader",
    "LoadSummary",
    "IdentityMap",
    "SpecRegistry",
    "ReplicationSchema",
    "TypeDef",
    "Relationship",
    "ResolvedType",
    "TypeRegistry",
    "Record",
    "Reference",
    "ReferenceList",
    "ReplicantTuple",
    "MANY_TO_MANY_TYPE",
    "TupleWriter",
    "read_tuples",
    "validate_stream",
    "fetch_record",
    "read_association",
    "ReplicationError",
    "SchemaError",
    "UnknownTypeError",
    "UnknownAssociationError",
    "AssociationShapeError",
    "StreamFormatError",
]
