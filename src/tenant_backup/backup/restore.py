"""Restore tenant data from a snapshot document.

Restore runs in two phases over the selected manifest tables:

1. **Delete** -- descending rank (children first), removes every row of the
   target tenant.
2. **Insert** -- ascending rank (parents first), upserts the snapshot rows
   with the tenant column rewritten to the target.

By default restore is best-effort: each table's outcome is recorded
independently and a failure in one table does not stop the next.  A table
whose delete succeeded but whose insert failed is reported as ``emptied``.
With ``atomic=True`` (and an adapter that supports transactions) the whole
tenant runs in one transaction and the first failure rolls everything back.

Identifier strategies:

- ``preserve`` keeps primary keys (default when restoring a tenant onto
  itself).
- ``remap`` derives deterministic new keys per target tenant and rewrites
  the declared foreign keys through per-table id maps (default when
  cloning into another tenant).  References to rows that are not part of
  the snapshot are set to ``None``.

Usage:
    from tenant_backup.backup.restore import restore_tenant

    report = await restore_tenant(adapter, DEFAULT_MANIFEST, document, "acme")
    if report.needs_review:
        print(report.errors)
"""

import asyncio
import logging
import uuid
from typing import Any, Literal

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.backup.document import BackupDocument, validate_document
from tenant_backup.backup.manifest import ManifestEntry, TableManifest
from tenant_backup.backup.models import SystemRestoreReport, TableResult, TenantRestoreReport
from tenant_backup.errors import (
    BackupError,
    FatalError,
    NotFoundError,
    TableOperationError,
)

logger = logging.getLogger(__name__)

IdStrategy = Literal["preserve", "remap"]
ID_STRATEGIES = ("preserve", "remap")

# Namespace for deterministic remapped primary keys.
REMAP_NAMESPACE = uuid.UUID("6f1c1c2e-52a4-4c53-9a51-3c3a0b6d2f10")


def remap_id(target_tenant_id: str, table: str, old_pk: Any) -> str:
    """Deterministic primary key for ``old_pk`` cloned into ``target_tenant_id``."""
    return str(uuid.uuid5(REMAP_NAMESPACE, f"{target_tenant_id}:{table}:{old_pk}"))


# ============================================================================
# Tenant row
# ============================================================================


async def ensure_tenant(
    adapter: DatabaseClient,
    manifest: TableManifest,
    tenant_id: str,
    settings_row: dict[str, Any] | None,
    create: bool = True,
) -> bool:
    """Make sure the tenant's configuration row exists.

    Returns:
        ``True`` if the row was created from ``settings_row``.

    Raises:
        NotFoundError: If the tenant is missing and cannot be created.
        FatalError: If the tenant table cannot be read or written.
    """
    try:
        existing = await adapter.select(
            manifest.tenant_table, manifest.tenant_key,
            filters={manifest.tenant_key: tenant_id},
        )
    except Exception as e:
        raise FatalError(f"Could not read tenant '{tenant_id}': {e}") from e
    if existing:
        return False

    if not create or settings_row is None:
        raise NotFoundError(f"Tenant '{tenant_id}' not found")

    row = dict(settings_row)
    row[manifest.tenant_key] = tenant_id
    try:
        await adapter.insert(manifest.tenant_table, data=row)
    except Exception as e:
        raise FatalError(f"Could not create tenant '{tenant_id}': {e}") from e
    logger.info("Created tenant %s from backup settings", tenant_id)
    return True


async def _put_tenant_row(
    adapter: DatabaseClient,
    manifest: TableManifest,
    tenant_id: str,
    settings_row: dict[str, Any] | None,
) -> bool:
    """Create or update a tenant row from the snapshot (system restore).

    Returns:
        ``True`` if created, ``False`` if updated.
    """
    if settings_row is None:
        raise NotFoundError(f"Backup has no tenant_settings row for '{tenant_id}'")

    created = await ensure_tenant(adapter, manifest, tenant_id, settings_row, create=True)
    if created:
        return True

    changes = {k: v for k, v in settings_row.items() if k != manifest.tenant_key}
    if changes:
        try:
            await adapter.update(
                manifest.tenant_table, data=changes,
                filters={manifest.tenant_key: tenant_id},
            )
        except Exception as e:
            raise FatalError(f"Could not update tenant '{tenant_id}': {e}") from e
    return False


# ============================================================================
# Row preparation
# ============================================================================


def build_id_maps(
    manifest: TableManifest,
    source_tables: dict[str, list[dict[str, Any]]],
    target_tenant_id: str,
) -> dict[str, dict[Any, str]]:
    """``table -> {old_pk: new_pk}`` for every tenant table in the snapshot."""
    id_maps: dict[str, dict[Any, str]] = {}
    for entry in manifest.tenant_tables:
        id_maps[entry.name] = {
            row[entry.pk]: remap_id(target_tenant_id, entry.name, row[entry.pk])
            for row in source_tables.get(entry.name) or []
            if row.get(entry.pk) is not None
        }
    return id_maps


def prepare_rows(
    manifest: TableManifest,
    entry: ManifestEntry,
    rows: list[dict[str, Any]],
    target_tenant_id: str,
    id_maps: dict[str, dict[Any, str]] | None = None,
) -> list[dict[str, Any]]:
    """Copy snapshot rows for insertion into ``target_tenant_id``.

    The snapshot rows are never modified.  With ``id_maps`` the primary key
    and every declared tenant-scoped reference are rewritten; references
    whose old id is not in the map are set to ``None``.
    """
    tenant_scoped = {e.name for e in manifest.tenant_tables}
    prepared = []
    for row in rows:
        row = dict(row)
        row[manifest.tenant_field] = target_tenant_id

        if id_maps is not None:
            row[entry.pk] = id_maps[entry.name].get(row[entry.pk], row[entry.pk])
            for ref in entry.references:
                if not ref.field or ref.table not in tenant_scoped:
                    continue
                old_ref = row.get(ref.field)
                if old_ref is not None:
                    row[ref.field] = id_maps.get(ref.table, {}).get(old_ref)

        prepared.append(row)
    return prepared


# ============================================================================
# Per-table phases
# ============================================================================


async def _delete_table(
    adapter: DatabaseClient,
    manifest: TableManifest,
    result: TableResult,
    target_tenant_id: str,
) -> None:
    try:
        result.deleted = await adapter.delete(
            result.table, {manifest.tenant_field: target_tenant_id}
        )
    except Exception as e:
        error = TableOperationError(result.table, "delete", str(e))
        result.delete_error = error.message
        logger.warning("Restore %s: %s", target_tenant_id, error)


async def _insert_table(
    adapter: DatabaseClient,
    manifest: TableManifest,
    entry: ManifestEntry,
    result: TableResult,
    rows: list[dict[str, Any]],
    target_tenant_id: str,
) -> None:
    result.expected = len(rows)
    if not rows:
        return
    try:
        result.inserted = await adapter.upsert(
            entry.name, rows, on_conflict=entry.pk, owner_field=manifest.tenant_field
        )
    except Exception as e:
        error = TableOperationError(entry.name, "insert", str(e))
        result.insert_error = error.message
        logger.warning("Restore %s: %s", target_tenant_id, error)
        return

    skipped = len(rows) - result.inserted
    if skipped > 0:
        result.insert_error = (
            f"{skipped} row(s) not written: primary key belongs to another tenant"
        )
        logger.warning("Restore %s: %s: %s", target_tenant_id, entry.name, result.insert_error)


async def _run_phases(
    adapter: DatabaseClient,
    manifest: TableManifest,
    entries: list[ManifestEntry],
    results: dict[str, TableResult],
    prepared: dict[str, list[dict[str, Any]]],
    target_tenant_id: str,
    strict: bool,
) -> None:
    """Delete then insert every entry, rank group by rank group.

    In ``strict`` mode siblings run one after another (a transaction has
    a single connection) and the first table failure raises
    ``TableOperationError``.
    """

    async def _each(coros) -> None:
        if strict:
            for coro in coros:
                await coro
        else:
            await asyncio.gather(*coros)

    def _check(group: list[ManifestEntry]) -> None:
        if not strict:
            return
        for entry in group:
            result = results[entry.name]
            if result.error:
                raise TableOperationError(entry.name, "restore", result.error)

    for group in manifest.rank_groups(list(reversed(entries))):
        await _each([_delete_table(adapter, manifest, results[e.name], target_tenant_id) for e in group])
        _check(group)
    logger.info("Restore %s: delete phase done", target_tenant_id)

    for group in manifest.rank_groups(entries):
        await _each([
            _insert_table(adapter, manifest, e, results[e.name], prepared[e.name], target_tenant_id)
            for e in group
        ])
        _check(group)
    logger.info("Restore %s: insert phase done", target_tenant_id)


# ============================================================================
# Tenant restore
# ============================================================================


def _resolve_source(document: BackupDocument, target_tenant_id: str, source: str | None) -> str:
    if source:
        return source
    tenant_ids = document.tenant_ids()
    if len(tenant_ids) == 1:
        return tenant_ids[0]
    if target_tenant_id in document.data:
        return target_tenant_id
    raise FatalError(
        "Backup contains several tenants; source_tenant_id is required"
    )


def check_document(document: BackupDocument, manifest: TableManifest) -> None:
    """Raise ``FatalError`` if the document cannot be used for restore."""
    report = validate_document(document, manifest)
    for warning in report.warnings:
        logger.warning("Backup document: %s", warning)
    if report.errors:
        raise FatalError("Invalid backup document: " + "; ".join(report.errors))


async def restore_tenant(
    adapter: DatabaseClient,
    manifest: TableManifest,
    document: BackupDocument,
    target_tenant_id: str,
    tables: list[str] | None = None,
    source_tenant_id: str | None = None,
    id_strategy: IdStrategy | None = None,
    atomic: bool = False,
    create_tenant_if_missing: bool = True,
) -> TenantRestoreReport:
    """Rebuild one tenant's tables from a snapshot.

    Args:
        adapter: Database adapter implementing ``DatabaseClient``.
        manifest: Table manifest driving order and filters.
        document: Loaded snapshot document.
        target_tenant_id: Tenant whose rows are replaced.
        tables: Optional subset of manifest tables (default: all).
        source_tenant_id: Tenant section of the document to read from.
            Defaults to the only tenant in the document, or the target.
        id_strategy: ``"preserve"`` or ``"remap"``; defaults to preserve
            when source and target match and remap otherwise.
        atomic: Run the tenant in one transaction when the adapter allows.
        create_tenant_if_missing: Create the target tenant row from the
            snapshot's ``tenant_settings`` when it does not exist.

    Returns:
        ``TenantRestoreReport`` with one ``TableResult`` per selected table.

    Raises:
        FatalError: Invalid document, unknown tables or source tenant, or
            unknown id strategy.  Nothing has been touched.
        NotFoundError: Target tenant missing and not creatable.
    """
    check_document(document, manifest)
    return await _restore_checked(
        adapter, manifest, document, target_tenant_id,
        tables=tables,
        source_tenant_id=source_tenant_id,
        id_strategy=id_strategy,
        atomic=atomic,
        create_tenant_if_missing=create_tenant_if_missing,
    )


async def _restore_checked(
    adapter: DatabaseClient,
    manifest: TableManifest,
    document: BackupDocument,
    target_tenant_id: str,
    tables: list[str] | None,
    source_tenant_id: str | None,
    id_strategy: IdStrategy | None,
    atomic: bool,
    create_tenant_if_missing: bool,
) -> TenantRestoreReport:
    if not target_tenant_id:
        raise FatalError("target_tenant_id is required")

    source = _resolve_source(document, target_tenant_id, source_tenant_id)
    source_tables = document.tenant_data(source)
    selected = manifest.insert_order(tables)

    strategy = id_strategy or ("preserve" if source == target_tenant_id else "remap")
    if strategy not in ID_STRATEGIES:
        raise FatalError(f"Unknown id strategy '{strategy}'")

    if atomic and not adapter.supports_transactions:
        logger.warning(
            "Restore %s: adapter has no transactions, running best-effort", target_tenant_id
        )
        atomic = False

    report = TenantRestoreReport(
        tenant_id=target_tenant_id, source_tenant_id=source, atomic=atomic
    )
    id_maps = build_id_maps(manifest, source_tables, target_tenant_id) if strategy == "remap" else None

    entries: list[ManifestEntry] = []
    prepared: dict[str, list[dict[str, Any]]] = {}
    results: dict[str, TableResult] = {}
    for entry in selected:
        result = TableResult(table=entry.name)
        report.tables.append(result)
        if entry.name not in source_tables:
            result.skipped = True
            continue
        results[entry.name] = result
        entries.append(entry)
        prepared[entry.name] = prepare_rows(
            manifest, entry, source_tables[entry.name], target_tenant_id, id_maps
        )

    settings_row = document.settings_row(source)
    logger.info(
        "Restoring %s from %s: %d tables, id strategy %s%s",
        target_tenant_id, source, len(entries), strategy, " (atomic)" if atomic else "",
    )

    if not atomic:
        report.tenant_created = await ensure_tenant(
            adapter, manifest, target_tenant_id, settings_row, create_tenant_if_missing
        )
        await _run_phases(
            adapter, manifest, entries, results, prepared, target_tenant_id, strict=False
        )
    else:
        try:
            async with adapter.transaction() as tx:
                report.tenant_created = await ensure_tenant(
                    tx, manifest, target_tenant_id, settings_row, create_tenant_if_missing
                )
                await _run_phases(
                    tx, manifest, entries, results, prepared, target_tenant_id, strict=True
                )
        except TableOperationError as e:
            logger.warning("Restore %s rolled back: %s", target_tenant_id, e)
            report.rolled_back = True
            report.tenant_created = False
            for result in results.values():
                result.rolled_back = True
                result.deleted = 0
                result.inserted = 0

    logger.info(
        "Restored %s: %d rows inserted, %d table errors",
        target_tenant_id, report.total_inserted, len(report.errors),
    )
    return report


# ============================================================================
# System restore
# ============================================================================


async def _restore_globals(
    adapter: DatabaseClient,
    manifest: TableManifest,
    global_data: dict[str, list[dict[str, Any]]],
) -> list[TableResult]:
    results = []
    for entry in manifest.global_order():
        if entry.name not in global_data:
            continue
        result = TableResult(table=entry.name)
        rows = [dict(row) for row in global_data[entry.name]]
        result.expected = len(rows)
        if rows:
            try:
                result.inserted = await adapter.upsert(entry.name, rows, on_conflict=entry.pk)
            except Exception as e:
                error = TableOperationError(entry.name, "insert", str(e))
                result.insert_error = error.message
                logger.warning("Restore globals: %s", error)
        results.append(result)
    return results


async def restore_system(
    adapter: DatabaseClient,
    manifest: TableManifest,
    document: BackupDocument,
    max_workers: int = 4,
    atomic: bool = False,
) -> SystemRestoreReport:
    """Restore the global tables, then every tenant in the document.

    Global tables are rank 0 and tenant tables such as ``subscriptions``
    reference them, so they are written before any tenant insert phase.

    Each tenant row is created or updated from its ``tenant_settings``
    entry and its tables are restored with ids preserved.  A failure for
    one tenant is recorded and does not stop the others.

    Raises:
        FatalError: If the document is invalid.  Nothing has been touched.
    """
    check_document(document, manifest)
    report = SystemRestoreReport()
    if document.global_data:
        report.global_tables = await _restore_globals(adapter, manifest, document.global_data)
    semaphore = asyncio.Semaphore(max(1, max_workers))

    async def _one(tenant_id: str) -> None:
        async with semaphore:
            try:
                created = await _put_tenant_row(
                    adapter, manifest, tenant_id, document.settings_row(tenant_id)
                )
                tenant_report = await _restore_checked(
                    adapter, manifest, document, tenant_id,
                    tables=None,
                    source_tenant_id=tenant_id,
                    id_strategy="preserve",
                    atomic=atomic,
                    create_tenant_if_missing=False,
                )
            except BackupError as e:
                logger.warning("System restore of tenant %s failed: %s", tenant_id, e)
                report.errors.append(f"{tenant_id}: {e}")
                return
            tenant_report.tenant_created = created
            if created:
                report.tenants_created += 1
            else:
                report.tenants_updated += 1
            report.tenants.append(tenant_report)

    await asyncio.gather(*(_one(tenant_id) for tenant_id in document.tenant_ids()))
    report.tenants.sort(key=lambda r: r.tenant_id)

    logger.info(
        "System restore: %d created, %d updated, %d records, %d tenant errors",
        report.tenants_created, report.tenants_updated,
        report.total_records_restored, len(report.errors),
    )
    return report
