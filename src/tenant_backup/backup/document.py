"""Snapshot document format: build, load, validate, and serialize.

Document layout (version ``2.0``)::

    {
      "backup_info": {"version": "2.0", "scope": "tenant", "createdAt": "...",
                      "tenantCount": 1, "totalRecords": 411,
                      "tableCounts": {...}, "tenants": [...]},
      "data": {"<tenant_id>": {"<table>": [...], "tenant_settings": [...]}},
      "global_data": {"<table>": [...]}          # system scope only
    }

Only ``2.0`` is accepted as-is.  Legacy ``1.0`` single-tenant documents
(flat ``data`` keyed by table, ``backup_info.company_id``) are upgraded on
load.  Every other version is rejected -- never best-effort parsed.

Usage:
    from tenant_backup.backup.document import load_document, validate_document

    document = load_document(raw_json)
    report = validate_document(document, manifest)
    if report.errors:
        raise FatalError("; ".join(report.errors))
"""

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from tenant_backup.backup.manifest import TENANT_SETTINGS_KEY, TableManifest
from tenant_backup.backup.models import BackupScope
from tenant_backup.errors import FatalError

SNAPSHOT_VERSION = "2.0"
LEGACY_VERSION = "1.0"
SUPPORTED_VERSIONS = frozenset({SNAPSHOT_VERSION})

# Column name carrying the tenant id in legacy (1.0) documents.
LEGACY_TENANT_FIELD = "company_id"
LEGACY_SETTINGS_KEY = "company_settings"


class TenantSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tenant_id: str
    name: str | None = None
    total_records: int = 0


class BackupInfo(BaseModel):
    """Header of a snapshot document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str = SNAPSHOT_VERSION
    scope: BackupScope
    created_at: datetime
    tenant_count: int = 0
    total_records: int = 0
    table_counts: dict[str, int] = Field(default_factory=dict)
    tenants: list[TenantSummary] = Field(default_factory=list)


class BackupDocument(BaseModel):
    """Versioned snapshot payload."""

    model_config = ConfigDict(populate_by_name=True)

    info: BackupInfo = Field(alias="backup_info")
    data: dict[str, dict[str, list[dict[str, Any]]]] = Field(default_factory=dict)
    global_data: dict[str, list[dict[str, Any]]] | None = None

    def tenant_ids(self) -> list[str]:
        return list(self.data.keys())

    def tenant_data(self, tenant_id: str) -> dict[str, list[dict[str, Any]]]:
        """Tables captured for one tenant.

        Raises:
            FatalError: If the tenant is not part of this document.
        """
        if tenant_id not in self.data:
            raise FatalError(f"Tenant '{tenant_id}' is not present in the backup document")
        return self.data[tenant_id]

    def settings_row(self, tenant_id: str) -> dict[str, Any] | None:
        rows = self.data.get(tenant_id, {}).get(TENANT_SETTINGS_KEY) or []
        return dict(rows[0]) if rows else None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def size_bytes(self) -> int:
        """Serialized document length in bytes (UTF-8)."""
        return len(self.to_json().encode("utf-8"))


class ValidationReport(BaseModel):
    """Outcome of ``validate_document``."""

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ============================================================================
# Loading
# ============================================================================


def load_document(
    raw: str | bytes | dict[str, Any],
    tenant_field: str = "tenant_id",
) -> BackupDocument:
    """Parse and version-check a snapshot document.

    Args:
        raw: JSON text, or an already-decoded dict (e.g. a stored record's
            ``document`` column).
        tenant_field: Tenant column name used by the current manifest;
            legacy documents have their ``company_id`` column renamed to it.

    Returns:
        ``BackupDocument``.

    Raises:
        FatalError: On invalid JSON, missing header, unknown version, or a
            payload that does not match the document schema.
    """
    if isinstance(raw, (str, bytes)):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise FatalError(f"Invalid JSON: {e}") from e
    else:
        payload = raw

    if not isinstance(payload, dict):
        raise FatalError("Backup document must be a JSON object")

    info = payload.get("backup_info")
    if not isinstance(info, dict):
        raise FatalError("Backup document is missing 'backup_info'")
    if not isinstance(payload.get("data"), dict):
        raise FatalError("Backup document is missing 'data'")

    version = info.get("version")
    if version == LEGACY_VERSION:
        payload = upgrade_legacy_document(payload, tenant_field)
    elif version not in SUPPORTED_VERSIONS:
        raise FatalError(
            f"Unsupported backup version '{version}' "
            f"(supported: {', '.join(sorted(SUPPORTED_VERSIONS | {LEGACY_VERSION}))})"
        )

    try:
        return BackupDocument.model_validate(payload)
    except ValidationError as e:
        raise FatalError(f"Malformed backup document: {e}") from e


def upgrade_legacy_document(payload: dict[str, Any], tenant_field: str) -> dict[str, Any]:
    """Convert a ``1.0`` single-tenant document into the ``2.0`` layout."""
    info = payload["backup_info"]
    tenant_id = info.get("company_id")
    if not tenant_id:
        raise FatalError("Legacy backup document has no 'company_id'")

    tables: dict[str, list[dict[str, Any]]] = {}
    for table, rows in payload["data"].items():
        key = TENANT_SETTINGS_KEY if table == LEGACY_SETTINGS_KEY else table
        converted = []
        for row in rows or []:
            row = dict(row)
            if key != TENANT_SETTINGS_KEY and LEGACY_TENANT_FIELD in row:
                row[tenant_field] = row.pop(LEGACY_TENANT_FIELD)
            converted.append(row)
        tables[key] = converted

    table_counts = info.get("table_counts") or {
        t: len(r) for t, r in tables.items()
    }
    total = info.get("total_records", sum(len(r) for r in tables.values()))

    return {
        "backup_info": {
            "version": SNAPSHOT_VERSION,
            "scope": BackupScope.TENANT.value,
            "createdAt": info.get("backup_date") or info.get("created_at"),
            "tenantCount": 1,
            "totalRecords": total,
            "tableCounts": table_counts,
            "tenants": [
                {"tenantId": tenant_id, "name": info.get("company_name"), "totalRecords": total}
            ],
        },
        "data": {tenant_id: tables},
    }


# ============================================================================
# Validation
# ============================================================================


def validate_document(document: BackupDocument, manifest: TableManifest) -> ValidationReport:
    """Check a loaded document against the manifest.

    Errors make the document unusable for restore; warnings are surfaced
    but do not block it.

    Checks:
        - every tenant section has a key for every manifest table
          (missing keys are warnings: such tables are skipped on restore)
        - unknown table keys (warning)
        - every row has a non-empty primary key (error)
        - header counts match the payload (warning)
    """
    report = ValidationReport()
    known = {e.name: e for e in manifest.tenant_tables}

    if not document.data:
        report.errors.append("Backup document contains no tenant data")

    for tenant_id, tables in document.data.items():
        for name in known:
            if name not in tables:
                report.warnings.append(f"{tenant_id}: table '{name}' missing from backup")

        for name, rows in tables.items():
            if name == TENANT_SETTINGS_KEY:
                continue
            entry = known.get(name)
            if entry is None:
                report.warnings.append(f"{tenant_id}: unknown table '{name}' ignored")
                continue
            for i, row in enumerate(rows):
                if row.get(entry.pk) is None:
                    report.errors.append(
                        f"{tenant_id}.{name}[{i}] has no '{entry.pk}' value"
                    )

    if document.info.tenant_count and document.info.tenant_count != len(document.data):
        report.warnings.append(
            f"Header says {document.info.tenant_count} tenants, "
            f"document has {len(document.data)}"
        )

    if document.global_data:
        global_names = {e.name for e in manifest.global_tables}
        for name in document.global_data:
            if name not in global_names:
                report.warnings.append(f"unknown global table '{name}' ignored")

    report.valid = not report.errors
    return report
