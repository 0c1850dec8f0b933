"""Snapshot capture for one tenant or the whole system.

Tables are read in ascending dependency rank so parents are captured
before children.  Tables that share a rank are read concurrently.

A failed table read never aborts the capture: the table is recorded as an
empty list and the error is kept in ``table_errors`` so the caller can
decide what an incomplete snapshot means (see ``BackupService``).

Usage:
    from tenant_backup.backup.capture import build_document, capture_tenant

    capture = await capture_tenant(adapter, DEFAULT_MANIFEST, "acme")
    document = build_document([capture], BackupScope.TENANT)
"""

import asyncio
import logging
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.backup.document import BackupDocument, BackupInfo, TenantSummary
from tenant_backup.backup.locks import TenantLocks
from tenant_backup.backup.manifest import TENANT_SETTINGS_KEY, ManifestEntry, TableManifest
from tenant_backup.backup.models import (
    BackupScope,
    SystemCapture,
    TableSnapshot,
    TenantCapture,
)
from tenant_backup.errors import BackupError, FatalError, NotFoundError, TableOperationError

logger = logging.getLogger(__name__)


async def _read_table(
    adapter: DatabaseClient,
    entry: ManifestEntry,
    filters: dict[str, Any] | None,
) -> TableSnapshot:
    try:
        rows = await adapter.select(entry.name, "*", filters=filters)
    except Exception as e:
        error = TableOperationError(entry.name, "read", str(e))
        logger.warning("Capture: %s", error)
        return TableSnapshot(table=entry.name, error=error.message)
    return TableSnapshot(table=entry.name, rows=rows)


async def load_tenant_row(
    adapter: DatabaseClient,
    manifest: TableManifest,
    tenant_id: str,
) -> dict[str, Any]:
    """Fetch the tenant's configuration row.

    Raises:
        NotFoundError: If no such tenant exists.
        FatalError: If the tenant table cannot be read at all.
    """
    try:
        rows = await adapter.select(
            manifest.tenant_table, "*", filters={manifest.tenant_key: tenant_id}
        )
    except Exception as e:
        raise FatalError(f"Could not read tenant '{tenant_id}': {e}") from e
    if not rows:
        raise NotFoundError(f"Tenant '{tenant_id}' not found")
    return rows[0]


async def capture_tenant(
    adapter: DatabaseClient,
    manifest: TableManifest,
    tenant_id: str,
    tenant_row: dict[str, Any] | None = None,
) -> TenantCapture:
    """Read every tenant-scoped table for one tenant.

    Args:
        adapter: Database adapter implementing ``DatabaseClient``.
        manifest: Table manifest driving order and filters.
        tenant_id: Tenant to capture.
        tenant_row: Already-loaded tenant configuration row (system
            capture passes it to avoid a second read).

    Returns:
        ``TenantCapture`` with rows, per-table counts, and any per-table
        read errors.  The tenant row is stored under ``tenant_settings``
        and counts toward ``total_records``.

    Raises:
        NotFoundError: If the tenant does not exist.
    """
    if tenant_row is None:
        tenant_row = await load_tenant_row(adapter, manifest, tenant_id)

    capture = TenantCapture(tenant_id=tenant_id, name=tenant_row.get("name"))
    filters = {manifest.tenant_field: tenant_id}

    for group in manifest.rank_groups(manifest.capture_order()):
        snapshots = await asyncio.gather(
            *(_read_table(adapter, entry, filters) for entry in group)
        )
        for snapshot in snapshots:
            capture.tables[snapshot.table] = snapshot.rows
            capture.table_counts[snapshot.table] = snapshot.count
            if snapshot.error:
                capture.table_errors[snapshot.table] = snapshot.error

    capture.tables[TENANT_SETTINGS_KEY] = [tenant_row]
    capture.table_counts[TENANT_SETTINGS_KEY] = 1
    capture.total_records = sum(capture.table_counts.values())
    capture.size_bytes = build_document([capture], BackupScope.TENANT).size_bytes()

    logger.info(
        "Captured tenant %s: %d records, %d table errors",
        tenant_id, capture.total_records, len(capture.table_errors),
    )
    return capture


async def capture_global_tables(
    adapter: DatabaseClient,
    manifest: TableManifest,
) -> tuple[dict[str, list[dict[str, Any]]], dict[str, str]]:
    """Read every tenant-independent table once (no tenant filter)."""
    data: dict[str, list[dict[str, Any]]] = {}
    errors: dict[str, str] = {}
    for group in manifest.rank_groups(manifest.global_order()):
        snapshots = await asyncio.gather(
            *(_read_table(adapter, entry, None) for entry in group)
        )
        for snapshot in snapshots:
            data[snapshot.table] = snapshot.rows
            if snapshot.error:
                errors[snapshot.table] = snapshot.error
    return data, errors


async def capture_system(
    adapter: DatabaseClient,
    manifest: TableManifest,
    max_workers: int = 4,
    locks: TenantLocks | None = None,
) -> SystemCapture:
    """Capture every tenant plus the global tables.

    Tenants are data-disjoint, so they are captured concurrently under a
    bounded worker pool.  A tenant that cannot be captured (deleted
    mid-run, lock held by a restore) is recorded with a tenant-level error
    and empty tables; the other tenants are unaffected.

    Raises:
        FatalError: If the tenant table itself cannot be listed.
    """
    try:
        tenant_rows = await adapter.select(
            manifest.tenant_table, "*", order_by=manifest.tenant_key
        )
    except Exception as e:
        raise FatalError(f"Could not list tenants: {e}") from e

    semaphore = asyncio.Semaphore(max(1, max_workers))
    table_names = manifest.table_names

    async def _one(row: dict[str, Any]) -> TenantCapture:
        tenant_id = str(row[manifest.tenant_key])
        guard = locks.hold(tenant_id, "capture") if locks else nullcontext()
        async with semaphore:
            try:
                async with guard:
                    return await capture_tenant(adapter, manifest, tenant_id, tenant_row=row)
            except BackupError as e:
                logger.warning("Capture of tenant %s failed: %s", tenant_id, e)
                return TenantCapture(
                    tenant_id=tenant_id,
                    name=row.get("name"),
                    tables={name: [] for name in table_names},
                    table_counts={name: 0 for name in table_names},
                    error=str(e),
                )

    captures = await asyncio.gather(*(_one(row) for row in tenant_rows))
    global_data, global_errors = await capture_global_tables(adapter, manifest)

    logger.info(
        "System capture: %d tenants, %d global tables",
        len(captures), len(global_data),
    )
    return SystemCapture(
        tenants=list(captures),
        global_data=global_data,
        global_errors=global_errors,
    )


def build_document(
    captures: list[TenantCapture],
    scope: BackupScope,
    global_data: dict[str, list[dict[str, Any]]] | None = None,
    created_at: datetime | None = None,
) -> BackupDocument:
    """Assemble a versioned document from tenant captures."""
    table_counts: dict[str, int] = {}
    for capture in captures:
        for table, count in capture.table_counts.items():
            table_counts[table] = table_counts.get(table, 0) + count

    total = sum(c.total_records for c in captures)
    if global_data:
        total += sum(len(rows) for rows in global_data.values())

    info = BackupInfo(
        scope=scope,
        created_at=created_at or datetime.now(timezone.utc),
        tenant_count=len(captures),
        total_records=total,
        table_counts=table_counts,
        tenants=[
            TenantSummary(tenant_id=c.tenant_id, name=c.name, total_records=c.total_records)
            for c in captures
        ],
    )
    return BackupDocument(
        info=info,
        data={c.tenant_id: c.tables for c in captures},
        global_data=global_data if scope is BackupScope.SYSTEM else None,
    )
