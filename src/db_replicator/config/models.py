"""Pydantic models for replicator configuration."""

from pydantic import BaseModel, Field

from db_replicator.replication.schema import ReplicationSchema


class DatabaseProfile(BaseModel):
    """Database connection profile from replicator.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres
    jsonb_columns: list[str] = Field(default_factory=list)


class ReplicatorConfig(BaseModel):
    """Complete replicator configuration from replicator.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    replication: ReplicationSchema = Field(default_factory=ReplicationSchema)  # declared record types
