"""tenant-backup: Tenant backup and restore for a multi-tenant HR database.

Captures versioned JSON snapshots of every tenant-scoped table (one tenant
or the whole system), catalogs them, and restores a tenant's rows in
foreign-key dependency order behind an authorization gate.

Usage:
    from tenant_backup import BackupService, CaptureRequest, RestoreRequest, Actor
    from tenant_backup import DEFAULT_MANIFEST, TableManifest, get_adapter
"""

__version__ = "0.1.0"

# Adapters
from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.adapters.postgres import AsyncPostgresAdapter

# Auth
from tenant_backup.auth import Actor, Decision, Operation, authorize, require

# Backup engine
from tenant_backup.backup import (
    DEFAULT_MANIFEST,
    BackupDocument,
    ForeignKey,
    ManifestEntry,
    TableManifest,
    TenantLocks,
    capture_system,
    capture_tenant,
    load_document,
    restore_system,
    restore_tenant,
    validate_document,
)
from tenant_backup.backup.models import (
    BackupRecord,
    BackupScope,
    BackupStatus,
    BackupType,
    GlobalBackupSettings,
)

# Config
from tenant_backup.config import BackupConfig, DatabaseProfile, load_config

# Errors
from tenant_backup.errors import (
    AuthError,
    BackupError,
    CaptureFailedError,
    FatalError,
    NotFoundError,
    TenantBusyError,
)

# Factory
from tenant_backup.factory import ProfileNotFoundError, get_adapter, resolve_url

# Registry, delivery, scheduling, endpoints
from tenant_backup.delivery import DeliveryResult, SmtpDeliveryDispatcher
from tenant_backup.registry import BackupRegistry, compute_next_run
from tenant_backup.scheduler import is_due, run_scheduled_backup
from tenant_backup.service import (
    BackupService,
    CaptureRequest,
    CaptureResponse,
    RestoreRequest,
    RestoreResponse,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Auth
    "Actor",
    "Decision",
    "Operation",
    "authorize",
    "require",
    # Backup engine
    "DEFAULT_MANIFEST",
    "TableManifest",
    "ManifestEntry",
    "ForeignKey",
    "BackupDocument",
    "TenantLocks",
    "capture_tenant",
    "capture_system",
    "load_document",
    "validate_document",
    "restore_tenant",
    "restore_system",
    "BackupRecord",
    "BackupScope",
    "BackupStatus",
    "BackupType",
    "GlobalBackupSettings",
    # Config
    "load_config",
    "BackupConfig",
    "DatabaseProfile",
    # Errors
    "BackupError",
    "AuthError",
    "NotFoundError",
    "FatalError",
    "CaptureFailedError",
    "TenantBusyError",
    # Factory
    "get_adapter",
    "resolve_url",
    "ProfileNotFoundError",
    # Registry, delivery, scheduling, endpoints
    "BackupRegistry",
    "compute_next_run",
    "DeliveryResult",
    "SmtpDeliveryDispatcher",
    "is_due",
    "run_scheduled_backup",
    "BackupService",
    "CaptureRequest",
    "CaptureResponse",
    "RestoreRequest",
    "RestoreResponse",
]

# Optional: AsyncSupabaseAdapter (only available with supabase extra)
try:
    from tenant_backup.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
