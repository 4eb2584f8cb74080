"""Pydantic models for relationship reflection.

This module contains the introspection results that ``build_schema()``
turns into record type declarations:
- ForeignKeySchema: one single-column foreign key constraint

Record type declarations themselves (TypeDef, Relationship) live in
db_replicator.replication.schema.
"""

from pydantic import BaseModel


# ============================================================================
# Schema Introspection Models
# ============================================================================


class ForeignKeySchema(BaseModel):
    """A single-column foreign key constraint.

    Example:
        >>> fk = ForeignKeySchema(table="posts", column="author_id",
        ...                       references_table="authors")
        >>> fk.references_column
        'id'
    """

    table: str
    column: str
    references_table: str
    references_column: str = "id"
    name: str | None = None  # constraint name
