"""Database adapter factory.

Resolves a named profile from ``replicator.toml`` into a connected
``AsyncPostgresAdapter``, and the declared record types into a
``TypeRegistry`` (reflecting them from the database when none are
declared).

Usage:
    from db_replicator.factory import get_adapter, get_registry

    config = load_replicator_config()
    adapter = await get_adapter("source", config)
    registry = get_registry(config, "source")
"""

import logging
from urllib.parse import quote

from db_replicator.adapters.base import DatabaseClient
from db_replicator.adapters.postgres import AsyncPostgresAdapter
from db_replicator.config.loader import load_replicator_config
from db_replicator.config.models import DatabaseProfile, ReplicatorConfig
from db_replicator.replication.schema import TypeRegistry
from db_replicator.schema.introspector import SchemaIntrospector, build_schema

logger = logging.getLogger(__name__)


class ProfileNotFoundError(Exception):
    """Raised when a requested database profile is not configured."""

    pass


def get_profile(profile_name: str, config: ReplicatorConfig | None = None) -> DatabaseProfile:
    """Look up a profile by name.

    Raises:
        ProfileNotFoundError: If the profile is not in the config.
    """
    if config is None:
        config = load_replicator_config()

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in replicator.toml.\n"
            f"Available profiles: {available}"
        )
    return config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with ``[YOUR-PASSWORD]`` replaced by the URL-encoded
        ``db_password``
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


async def get_adapter(
    profile_name: str,
    config: ReplicatorConfig | None = None,
    validate: bool = True,
) -> DatabaseClient:
    """Create an adapter for a named profile.

    Args:
        profile_name: Profile name from replicator.toml.
        config: Loaded config (read from ``./replicator.toml`` when None).
        validate: Run a ``SELECT 1`` before returning.

    Raises:
        ProfileNotFoundError: If the profile is not configured.
        ValueError: If the profile's provider is not ``postgres``.
    """
    profile = get_profile(profile_name, config)
    if profile.provider != "postgres":
        raise ValueError(
            f"Profile '{profile_name}': unsupported provider '{profile.provider}'"
        )

    adapter = AsyncPostgresAdapter(resolve_url(profile), jsonb_columns=profile.jsonb_columns)
    if validate:
        try:
            await adapter.test_connection()
        except Exception:
            await adapter.close()
            raise
    return adapter


def get_registry(config: ReplicatorConfig, profile_name: str | None = None) -> TypeRegistry:
    """Resolve the declared record types.

    When the config declares no types and ``profile_name`` is given, the
    types are reflected from that database's foreign keys.

    Raises:
        SchemaError: If the declarations are inconsistent.
    """
    schema = config.replication
    if not schema.types and profile_name is not None:
        url = resolve_url(get_profile(profile_name, config))
        logger.info("No types declared; reflecting from profile '%s'", profile_name)
        with SchemaIntrospector(url) as introspector:
            schema = build_schema(
                introspector.get_tables(),
                introspector.get_primary_keys(),
                introspector.get_foreign_keys(),
            )
    return schema.resolve()
