"""Snapshot capture and restore driven by a declarative table manifest.

The manifest declares every table, its dependency rank, and its foreign
keys.  Capture reads tables in ascending rank; restore deletes in
descending rank and inserts in ascending rank.

Usage:
    from tenant_backup.backup import DEFAULT_MANIFEST, capture_tenant, restore_tenant
    from tenant_backup.backup import load_document, validate_document
"""

from tenant_backup.backup.capture import (
    build_document,
    capture_system,
    capture_tenant,
)
from tenant_backup.backup.document import (
    SNAPSHOT_VERSION,
    BackupDocument,
    load_document,
    validate_document,
)
from tenant_backup.backup.locks import TenantLocks
from tenant_backup.backup.manifest import (
    DEFAULT_MANIFEST,
    TENANT_SETTINGS_KEY,
    ForeignKey,
    ManifestEntry,
    TableManifest,
)
from tenant_backup.backup.restore import restore_system, restore_tenant

__all__ = [
    "DEFAULT_MANIFEST",
    "TENANT_SETTINGS_KEY",
    "SNAPSHOT_VERSION",
    "TableManifest",
    "ManifestEntry",
    "ForeignKey",
    "BackupDocument",
    "TenantLocks",
    "build_document",
    "capture_tenant",
    "capture_system",
    "load_document",
    "validate_document",
    "restore_tenant",
    "restore_system",
]
