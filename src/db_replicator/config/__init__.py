"""Configuration management: profiles, record types, and TOML loading.

Usage:
    >>> from db_replicator.config import load_replicator_config, DatabaseProfile
"""

from db_replicator.config.loader import load_replicator_config
from db_replicator.config.models import DatabaseProfile, ReplicatorConfig

__all__ = ["load_replicator_config", "ReplicatorConfig", "DatabaseProfile"]
