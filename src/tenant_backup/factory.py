"""Database adapter factory.

Resolves a profile from ``backup.toml`` and builds the matching adapter.

Profile resolution:
1. Explicit ``profile_name`` argument (CLI ``--profile``)
2. ``{env_prefix}DB_PROFILE`` environment variable
3. Raise ``ProfileNotFoundError``
"""

import os
from pathlib import Path
from urllib.parse import quote

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.adapters.postgres import AsyncPostgresAdapter
from tenant_backup.config.loader import load_config
from tenant_backup.config.models import BackupConfig, DatabaseProfile

# Columns written as JSONB by the registry tables.
JSONB_COLUMNS = ["document", "tables_included", "table_errors"]


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured or the name is unknown."""

    pass


def get_active_profile_name(profile_name: str | None = None, env_prefix: str = "") -> str:
    """Get active profile name from the argument or environment.

    Raises:
        ProfileNotFoundError: If no profile is configured.
    """
    if profile_name:
        return profile_name

    env_profile = os.environ.get(f"{env_prefix}DB_PROFILE")
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Set {env_prefix}DB_PROFILE=<name> or pass --profile <name>."
    )


def get_profile(config: BackupConfig, profile_name: str) -> DatabaseProfile:
    """Look up a profile by name.

    Raises:
        ProfileNotFoundError: If the profile is not in the config.
    """
    if profile_name not in config.profiles:
        available = ", ".join(config.profiles) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in backup.toml.\n"
            f"Available profiles: {available}"
        )
    return config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def create_adapter(profile: DatabaseProfile) -> DatabaseClient:
    """Build the adapter for a profile's provider.

    Raises:
        ImportError: If the supabase provider is used without the
            ``supabase`` extra installed.
        ValueError: If a supabase profile has no ``supabase_key``.
    """
    if profile.provider == "supabase":
        if not profile.supabase_key:
            raise ValueError("Supabase profiles require 'supabase_key'")
        try:
            from tenant_backup.adapters.supabase import AsyncSupabaseAdapter
        except ImportError as e:
            raise ImportError(
                "The supabase provider needs the 'supabase' extra: "
                "pip install 'tenant-backup[supabase]'"
            ) from e
        return AsyncSupabaseAdapter(url=profile.url, key=profile.supabase_key)

    return AsyncPostgresAdapter(database_url=resolve_url(profile), jsonb_columns=JSONB_COLUMNS)


def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: BackupConfig | None = None,
    config_path: Path | None = None,
) -> DatabaseClient:
    """Create a database adapter for the active profile.

    Args:
        profile_name: Profile to use; falls back to ``{env_prefix}DB_PROFILE``.
        env_prefix: Prefix for environment variable lookups.
        config: Already-loaded configuration (skips reading the file).
        config_path: Path to backup.toml when ``config`` is not given.

    Returns:
        ``DatabaseClient`` instance (``AsyncPostgresAdapter`` or
        ``AsyncSupabaseAdapter``).

    Raises:
        ProfileNotFoundError: If no profile is configured or it is unknown.
        FileNotFoundError: If the config file does not exist.

    Example:
        adapter = get_adapter("local")
        rows = await adapter.select("tenants", "id, name")
    """
    name = get_active_profile_name(profile_name, env_prefix)
    if config is None:
        config = load_config(config_path, env_prefix=env_prefix)
    return create_adapter(get_profile(config, name))
