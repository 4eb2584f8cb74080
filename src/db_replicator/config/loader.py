"""Load replicator configuration from a TOML file."""

import tomllib
from pathlib import Path

from db_replicator.config.models import DatabaseProfile, ReplicatorConfig
from db_replicator.replication.schema import ReplicationSchema, TypeDef


def load_replicator_config(config_path: Path | None = None) -> ReplicatorConfig:
    """Load profiles and record type declarations from TOML.

    Args:
        config_path: Path to replicator.toml (default: ``./replicator.toml``)

    Returns:
        ReplicatorConfig with all profiles and declared types

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If a profile or type declaration is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / "replicator.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Replicator config not found: {config_path}\n"
            f"Create replicator.toml with [profiles.<name>] sections."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    # Parse record types ([[types]] array of tables)
    types = [TypeDef(**type_data) for type_data in data.get("types", [])]

    return ReplicatorConfig(profiles=profiles, replication=ReplicationSchema(types=types))
