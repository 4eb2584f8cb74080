"""Relationship reflection from a live database.

Provides live database introspection (``SchemaIntrospector``) and the
conversion of reflected constraints into record type declarations
(``build_schema``).

Usage:
    from db_replicator.schema import SchemaIntrospector, build_schema
"""

from db_replicator.schema.introspector import SchemaIntrospector, build_schema
from db_replicator.schema.models import ForeignKeySchema

__all__ = [
    "SchemaIntrospector",
    "build_schema",
    "ForeignKeySchema",
]
