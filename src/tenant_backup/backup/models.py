"""Domain models for backup records, settings, and operation reports.

Usage:
    from tenant_backup.backup.models import BackupRecord, BackupStatus, TableResult
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class BackupScope(str, Enum):
    TENANT = "tenant"
    SYSTEM = "system"


class BackupType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class BackupStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RESTORING = "restoring"


# Allowed status edges.  Everything is one-directional except the
# completed -> restoring -> completed loop used while a record is a
# restore source.
STATUS_TRANSITIONS: dict[BackupStatus, frozenset[BackupStatus]] = {
    BackupStatus.IN_PROGRESS: frozenset({BackupStatus.COMPLETED, BackupStatus.FAILED}),
    BackupStatus.COMPLETED: frozenset({BackupStatus.RESTORING}),
    BackupStatus.RESTORING: frozenset({BackupStatus.COMPLETED}),
    BackupStatus.FAILED: frozenset(),
}


# ============================================================================
# Persisted models
# ============================================================================


class BackupRecord(BaseModel):
    """Catalog entry for one captured snapshot."""

    id: str
    tenant_id: str | None = None    # None for system-wide backups
    scope: BackupScope
    backup_type: BackupType = BackupType.MANUAL
    status: BackupStatus = BackupStatus.IN_PROGRESS
    document: dict[str, Any] | None = None
    tables_included: list[str] = Field(default_factory=list)
    size_bytes: int = 0
    created_by: str | None = None
    created_at: datetime
    email_sent: bool = False
    email_sent_at: datetime | None = None
    notes: str | None = None
    table_errors: dict[str, str] = Field(default_factory=dict)


class GlobalBackupSettings(BaseModel):
    """Singleton scheduling settings for automatic system backups."""

    id: str = "global"
    auto_backup_enabled: bool = False
    hour: int = Field(default=3, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    frequency_hours: int = Field(default=24, ge=1)
    auto_email_enabled: bool = False
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None


class EmailRecipient(BaseModel):
    """Address that receives emailed backup artifacts."""

    id: str
    email: str
    name: str | None = None
    active: bool = True


class BackupStats(BaseModel):
    total_backups: int = 0
    total_size_bytes: int = 0
    emails_sent: int = 0
    last_backup_at: datetime | None = None


# ============================================================================
# Operation results
# ============================================================================


class TableSnapshot(BaseModel):
    """Outcome of reading one table during capture."""

    table: str
    rows: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None

    @property
    def count(self) -> int:
        return len(self.rows)


class TenantCapture(BaseModel):
    """Everything captured for one tenant."""

    tenant_id: str
    name: str | None = None
    tables: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    table_counts: dict[str, int] = Field(default_factory=dict)
    table_errors: dict[str, str] = Field(default_factory=dict)
    error: str | None = None        # tenant-level failure (system capture only)
    total_records: int = 0
    size_bytes: int = 0

    @property
    def ok(self) -> bool:
        return not self.table_errors and self.error is None


class SystemCapture(BaseModel):
    """Per-tenant captures plus the tenant-independent tables."""

    tenants: list[TenantCapture] = Field(default_factory=list)
    global_data: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    global_errors: dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.global_errors and all(t.ok for t in self.tenants)

    @property
    def table_errors(self) -> dict[str, str]:
        """Flattened ``tenant.table -> error`` (``global.table`` for globals)."""
        errors: dict[str, str] = {}
        for capture in self.tenants:
            if capture.error:
                errors[f"{capture.tenant_id}.*"] = capture.error
            for table, message in capture.table_errors.items():
                errors[f"{capture.tenant_id}.{table}"] = message
        for table, message in self.global_errors.items():
            errors[f"global.{table}"] = message
        return errors


class TableResult(BaseModel):
    """Per-table restore outcome.

    The delete and insert phases are recorded separately.  ``emptied`` is
    the dangerous case: existing rows were removed but the snapshot rows
    could not be written back.
    """

    table: str
    deleted: int = 0
    inserted: int = 0
    expected: int = 0
    delete_error: str | None = None
    insert_error: str | None = None
    skipped: bool = False
    rolled_back: bool = False

    @property
    def error(self) -> str | None:
        errors = [e for e in (self.delete_error, self.insert_error) if e]
        return "; ".join(errors) if errors else None

    @property
    def emptied(self) -> bool:
        return self.delete_error is None and self.insert_error is not None and not self.rolled_back

    def as_response(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "table": self.table,
            "deleted": self.deleted,
            "inserted": self.inserted,
        }
        if self.error:
            out["error"] = self.error
        if self.emptied:
            out["emptied"] = True
        if self.skipped:
            out["skipped"] = True
        if self.rolled_back:
            out["rolled_back"] = True
        return out


class TenantRestoreReport(BaseModel):
    """Result of restoring one tenant."""

    tenant_id: str
    source_tenant_id: str
    tenant_created: bool = False
    atomic: bool = False
    rolled_back: bool = False
    tables: list[TableResult] = Field(default_factory=list)

    @property
    def errors(self) -> dict[str, str]:
        return {t.table: t.error for t in self.tables if t.error}

    @property
    def needs_review(self) -> bool:
        return self.rolled_back or bool(self.errors)

    @property
    def emptied_tables(self) -> list[str]:
        return [t.table for t in self.tables if t.emptied]

    @property
    def total_inserted(self) -> int:
        return sum(t.inserted for t in self.tables)

    def table(self, name: str) -> TableResult | None:
        for result in self.tables:
            if result.table == name:
                return result
        return None


class SystemRestoreReport(BaseModel):
    """Result of a system-wide restore."""

    tenants: list[TenantRestoreReport] = Field(default_factory=list)
    tenants_created: int = 0
    tenants_updated: int = 0
    global_tables: list[TableResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def total_records_restored(self) -> int:
        tenant_rows = sum(r.total_inserted for r in self.tenants)
        return tenant_rows + sum(t.inserted for t in self.global_tables)

    @property
    def needs_review(self) -> bool:
        return (
            bool(self.errors)
            or any(r.needs_review for r in self.tenants)
            or any(t.error for t in self.global_tables)
        )
