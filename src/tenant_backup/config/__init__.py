"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from tenant_backup.config import load_config, BackupConfig, DatabaseProfile
"""

from tenant_backup.config.loader import load_config
from tenant_backup.config.models import (
    BackupConfig,
    BackupOptions,
    DatabaseProfile,
    DeliveryOptions,
    SmtpSettings,
)

__all__ = [
    "load_config",
    "BackupConfig",
    "BackupOptions",
    "DatabaseProfile",
    "DeliveryOptions",
    "SmtpSettings",
]
