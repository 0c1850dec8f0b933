"""Pydantic models for backup engine configuration."""

from typing import Literal

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from backup.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: Literal["postgres", "supabase"] = "postgres"
    supabase_key: str | None = None  # Service key, supabase provider only


class BackupOptions(BaseModel):
    """``[backup]`` section."""

    max_tenant_workers: int = Field(default=4, ge=1)
    allow_partial_capture: bool = False
    create_tenant_if_missing: bool = True
    atomic_restore: bool = False


class SmtpSettings(BaseModel):
    """``[delivery.smtp]`` section."""

    host: str | None = None
    port: int = 587
    user: str | None = None
    password: str | None = None
    sender: str = "no-reply@example.com"
    use_tls: bool = True
    timeout: float = 30.0


class DeliveryOptions(BaseModel):
    """``[delivery]`` section."""

    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    fallback_recipient: str | None = None  # Used when no active recipient exists


class BackupConfig(BaseModel):
    """Complete configuration from backup.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    backup: BackupOptions = Field(default_factory=BackupOptions)
    delivery: DeliveryOptions = Field(default_factory=DeliveryOptions)
