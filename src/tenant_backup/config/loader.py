"""TOML configuration loading."""

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from tenant_backup.config.models import BackupConfig

DEFAULT_CONFIG_FILE = "backup.toml"


def load_config(config_path: Path | None = None, env_prefix: str = "") -> BackupConfig:
    """Load backup engine configuration from a TOML file.

    Args:
        config_path: Path to the TOML file.  Defaults to
            ``{env_prefix}BACKUP_CONFIG`` if set, else ``./backup.toml``.
        env_prefix: Prefix for environment variable lookups.

    Returns:
        BackupConfig with profiles, backup options, and delivery options.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If config format is invalid.

    Example:
        config = load_config(Path("backup.toml"))
        config.backup.max_tenant_workers
        # 4
    """
    if config_path is None:
        env_path = os.environ.get(f"{env_prefix}BACKUP_CONFIG")
        config_path = Path(env_path) if env_path else Path.cwd() / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Backup config not found: {config_path}\n"
            f"Copy backup.toml.example to backup.toml and configure your profiles."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        return BackupConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid backup config {config_path}: {e}") from e
