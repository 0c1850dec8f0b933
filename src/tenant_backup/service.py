"""Backup and restore endpoints.

``BackupService`` ties the pieces together for a caller (HTTP handler,
CLI, scheduler):

    authorize -> lock tenant -> capture -> persist record -> (deliver)
    authorize -> fetch record -> lock tenant -> restore -> report

Every method takes the calling ``Actor`` and raises ``AuthError`` before
any tenant table is read or written.

Usage:
    service = BackupService(adapter, options=config.backup)
    response = await service.capture(
        CaptureRequest(scope=BackupScope.TENANT, tenant_id="acme"), actor
    )
    report = await service.restore(
        RestoreRequest(backup_id=response.backup_id, target_tenant_id="acme"), actor
    )
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

from pydantic import BaseModel, Field

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.auth import Actor, Operation, can_act_for_tenant, require
from tenant_backup.backup.capture import (
    build_document,
    capture_system,
    capture_tenant,
    load_tenant_row,
)
from tenant_backup.backup.document import BackupDocument, load_document
from tenant_backup.backup.locks import TenantLocks
from tenant_backup.backup.manifest import DEFAULT_MANIFEST, TableManifest
from tenant_backup.backup.models import (
    BackupRecord,
    BackupScope,
    BackupStats,
    BackupStatus,
    BackupType,
    EmailRecipient,
    GlobalBackupSettings,
    SystemRestoreReport,
    TenantCapture,
)
from tenant_backup.backup.restore import IdStrategy, restore_system, restore_tenant
from tenant_backup.config.models import BackupOptions
from tenant_backup.delivery import DeliveryDispatcher, DeliveryResult
from tenant_backup.errors import AuthError, BackupError, CaptureFailedError, FatalError
from tenant_backup.registry import BackupRegistry

logger = logging.getLogger(__name__)


# ============================================================================
# Request / response models
# ============================================================================


class CaptureRequest(BaseModel):
    scope: BackupScope
    tenant_id: str | None = None
    backup_type: BackupType = BackupType.MANUAL
    notes: str | None = None


class TenantCaptureSummary(BaseModel):
    tenant_id: str
    total_records: int
    size_bytes: int
    table_counts: dict[str, int]
    status: Literal["completed", "failed"]
    errors: dict[str, str] = Field(default_factory=dict)


class CaptureResponse(BaseModel):
    backup_id: str
    scope: BackupScope
    status: BackupStatus
    size_bytes: int
    total_records: int
    per_tenant: list[TenantCaptureSummary] = Field(default_factory=list)


class RestoreRequest(BaseModel):
    """Restore one tenant from a stored backup or an uploaded document.

    Exactly one of ``backup_id`` and ``document`` must be given.
    """

    target_tenant_id: str
    backup_id: str | None = None
    document: dict[str, Any] | str | None = None
    source_tenant_id: str | None = None
    tables: list[str] | None = None
    atomic: bool | None = None
    id_strategy: IdStrategy | None = None


class RestoreResponse(BaseModel):
    tenant_id: str
    source_tenant_id: str
    backup_id: str | None = None
    per_table: list[dict[str, Any]] = Field(default_factory=list)
    needs_review: bool = False
    rolled_back: bool = False
    tenant_created: bool = False
    emptied_tables: list[str] = Field(default_factory=list)


def _summarize(capture: TenantCapture) -> TenantCaptureSummary:
    return TenantCaptureSummary(
        tenant_id=capture.tenant_id,
        total_records=capture.total_records,
        size_bytes=capture.size_bytes,
        table_counts=capture.table_counts,
        status="completed" if capture.ok else "failed",
        errors={**capture.table_errors, **({"*": capture.error} if capture.error else {})},
    )


# ============================================================================
# Service
# ============================================================================


class BackupService:
    """Authorized capture, restore, and catalog operations.

    Args:
        adapter: Database adapter for tenant data and the registry tables.
        registry: Backup registry (defaults to one over ``adapter``).
        manifest: Table manifest (defaults to the HR manifest).
        options: ``[backup]`` options (workers, partial capture policy).
        dispatcher: Optional delivery dispatcher for emailing backups.
        locks: Per-tenant lock registry, shared by every caller of this
            service instance.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        registry: BackupRegistry | None = None,
        manifest: TableManifest = DEFAULT_MANIFEST,
        options: BackupOptions | None = None,
        dispatcher: DeliveryDispatcher | None = None,
        locks: TenantLocks | None = None,
    ) -> None:
        self.adapter = adapter
        self.registry = registry or BackupRegistry(adapter)
        self.manifest = manifest
        self.options = options or BackupOptions()
        self.dispatcher = dispatcher
        self.locks = locks or TenantLocks()
        # backup id -> number of restores currently reading the record
        self._readers: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture(self, request: CaptureRequest, actor: Actor | None) -> CaptureResponse:
        """Capture one tenant or the whole system and persist the record.

        Raises:
            AuthError: Before any access if the actor may not capture.
            NotFoundError: Tenant does not exist.
            TenantBusyError: Tenant is being captured or restored.
            CaptureFailedError: Some tables could not be read (the record is
                stored as ``failed`` unless partial captures are allowed).
        """
        if request.scope is BackupScope.TENANT and not request.tenant_id:
            raise FatalError("tenant_id is required for a tenant backup")
        require(actor, Operation.CAPTURE, request.scope, request.tenant_id)

        if request.scope is BackupScope.TENANT:
            async with self.locks.hold(request.tenant_id, "capture"):
                tenant_row = await load_tenant_row(self.adapter, self.manifest, request.tenant_id)
                record = await self._start(request, actor)
                try:
                    capture = await capture_tenant(
                        self.adapter, self.manifest, request.tenant_id, tenant_row=tenant_row
                    )
                except BackupError:
                    await self._abort(record)
                    raise
            captures = [capture]
            document = build_document(captures, BackupScope.TENANT)
            table_errors = capture.table_errors
        else:
            record = await self._start(request, actor)
            try:
                system = await capture_system(
                    self.adapter,
                    self.manifest,
                    max_workers=self.options.max_tenant_workers,
                    locks=self.locks,
                )
            except BackupError:
                await self._abort(record)
                raise
            captures = system.tenants
            document = build_document(
                captures, BackupScope.SYSTEM, global_data=system.global_data
            )
            table_errors = system.table_errors

        incomplete = bool(table_errors)
        status = (
            BackupStatus.FAILED
            if incomplete and not self.options.allow_partial_capture
            else BackupStatus.COMPLETED
        )
        size = document.size_bytes()
        record = await self.registry.finalize(
            record.id,
            status,
            document=document.to_dict(),
            tables_included=self.manifest.table_names,
            size_bytes=size,
            table_errors=table_errors,
        )

        if status is BackupStatus.FAILED:
            logger.warning("Backup %s failed: %d table errors", record.id, len(table_errors))
            raise CaptureFailedError(record.id, table_errors)

        return CaptureResponse(
            backup_id=record.id,
            scope=request.scope,
            status=status,
            size_bytes=size,
            total_records=document.info.total_records,
            per_tenant=[_summarize(c) for c in captures],
        )

    async def _start(self, request: CaptureRequest, actor: Actor) -> BackupRecord:
        return await self.registry.create_record(
            request.scope,
            tenant_id=request.tenant_id if request.scope is BackupScope.TENANT else None,
            backup_type=request.backup_type,
            created_by=actor.user_id,
            notes=request.notes,
        )

    async def _abort(self, record: BackupRecord) -> None:
        await self.registry.finalize(record.id, BackupStatus.FAILED)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def _check_record_access(self, actor: Actor, operation: Operation, record: BackupRecord) -> None:
        require(actor, operation, record.scope, record.tenant_id)

    def _check_source_access(self, actor: Actor, document: BackupDocument, source: str | None) -> None:
        sources = [source] if source else document.tenant_ids()
        for tenant_id in sources:
            if not can_act_for_tenant(actor, tenant_id):
                raise AuthError(f"Not allowed to read backup data of tenant '{tenant_id}'")

    @asynccontextmanager
    async def _reading(self, record: BackupRecord | None) -> AsyncIterator[None]:
        """Mark ``record`` as ``restoring`` while at least one restore reads it.

        The first reader sets the status and the last one to finish sets it
        back to ``completed``, so restores of one backup into different
        tenants can run side by side.
        """
        if record is None:
            yield
            return

        count = self._readers.get(record.id, 0)
        self._readers[record.id] = count + 1
        if count == 0:
            try:
                await self.registry.set_status(record.id, BackupStatus.RESTORING)
            except BaseException:
                self._release(record.id)
                raise
        try:
            yield
        finally:
            if self._release(record.id) == 0:
                await self.registry.set_status(record.id, BackupStatus.COMPLETED)

    def _release(self, backup_id: str) -> int:
        remaining = self._readers[backup_id] - 1
        if remaining:
            self._readers[backup_id] = remaining
        else:
            del self._readers[backup_id]
        return remaining

    async def _load_source(
        self,
        backup_id: str | None,
        document: dict[str, Any] | str | None,
    ) -> tuple[BackupRecord | None, BackupDocument]:
        if (backup_id is None) == (document is None):
            raise FatalError("Provide exactly one of backup_id or document")
        if backup_id is not None:
            record = await self.registry.get(backup_id)
            usable = record.status in (BackupStatus.COMPLETED, BackupStatus.RESTORING)
            if not usable or record.document is None:
                raise FatalError(
                    f"Backup {backup_id} is {record.status.value} and cannot be restored"
                )
            return record, load_document(record.document, self.manifest.tenant_field)
        return None, load_document(document, self.manifest.tenant_field)

    async def restore(self, request: RestoreRequest, actor: Actor | None) -> RestoreResponse:
        """Restore one tenant.

        Raises:
            AuthError: Before any access if the actor may not restore the
                target tenant, or may not read the backup's source tenant.
            FatalError: Invalid document, unknown tables, unusable record.
            NotFoundError: Unknown backup id or target tenant.
            TenantBusyError: Target tenant is being captured or restored.
        """
        require(actor, Operation.RESTORE, BackupScope.TENANT, request.target_tenant_id)

        record, document = await self._load_source(request.backup_id, request.document)
        if record is not None and record.scope is BackupScope.SYSTEM and not actor.is_super_admin:
            raise AuthError("Restoring from a system backup requires super admin")
        self._check_source_access(actor, document, request.source_tenant_id)

        atomic = self.options.atomic_restore if request.atomic is None else request.atomic
        async with self.locks.hold(request.target_tenant_id, "restore"), self._reading(record):
            report = await restore_tenant(
                self.adapter,
                self.manifest,
                document,
                request.target_tenant_id,
                tables=request.tables,
                source_tenant_id=request.source_tenant_id,
                id_strategy=request.id_strategy,
                atomic=atomic,
                create_tenant_if_missing=self.options.create_tenant_if_missing,
            )

        return RestoreResponse(
            tenant_id=report.tenant_id,
            source_tenant_id=report.source_tenant_id,
            backup_id=record.id if record else None,
            per_table=[t.as_response() for t in report.tables],
            needs_review=report.needs_review,
            rolled_back=report.rolled_back,
            tenant_created=report.tenant_created,
            emptied_tables=report.emptied_tables,
        )

    async def restore_system(
        self,
        actor: Actor | None,
        backup_id: str | None = None,
        document: dict[str, Any] | str | None = None,
    ) -> SystemRestoreReport:
        """Restore every tenant in a document plus the global tables."""
        require(actor, Operation.RESTORE, BackupScope.SYSTEM)
        record, loaded = await self._load_source(backup_id, document)

        async with self.locks.hold_many(loaded.tenant_ids(), "restore"), self._reading(record):
            return await restore_system(
                self.adapter,
                self.manifest,
                loaded,
                max_workers=self.options.max_tenant_workers,
                atomic=self.options.atomic_restore,
            )

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def list_backups(
        self,
        actor: Actor | None,
        tenant_id: str | None = None,
        scope: BackupScope | None = None,
    ) -> list[BackupRecord]:
        """Records visible to the actor, newest first (without documents)."""
        if actor is not None and actor.is_super_admin:
            return await self.registry.list_records(tenant_id=tenant_id, scope=scope)

        target = tenant_id or (actor.tenant_id if actor else None)
        require(actor, Operation.VIEW, BackupScope.TENANT, target)
        return await self.registry.list_records(tenant_id=target, scope=BackupScope.TENANT)

    async def get_backup(self, backup_id: str, actor: Actor | None) -> BackupRecord:
        if actor is None:
            raise AuthError("Not authenticated", authenticated=False)
        record = await self.registry.get(backup_id)
        self._check_record_access(actor, Operation.VIEW, record)
        return record

    async def delete_backup(self, backup_id: str, actor: Actor | None) -> None:
        record = await self.get_backup(backup_id, actor)
        self._check_record_access(actor, Operation.DELETE, record)
        await self.registry.delete(record.id)

    async def export_document(self, backup_id: str, actor: Actor | None) -> str:
        """The stored snapshot document as JSON text."""
        record = await self.get_backup(backup_id, actor)
        self._check_record_access(actor, Operation.EXPORT, record)
        if record.document is None:
            raise FatalError(f"Backup {backup_id} has no document")
        return json.dumps(record.document, indent=2, default=str)

    async def stats(self, actor: Actor | None, tenant_id: str | None = None) -> BackupStats:
        if actor is not None and actor.is_super_admin:
            return await self.registry.stats(tenant_id=tenant_id)
        target = tenant_id or (actor.tenant_id if actor else None)
        require(actor, Operation.VIEW, BackupScope.TENANT, target)
        return await self.registry.stats(tenant_id=target)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send_backup_email(self, backup_id: str, actor: Actor | None) -> DeliveryResult:
        """Email one backup to the active recipients and mark it sent."""
        record = await self.get_backup(backup_id, actor)
        self._check_record_access(actor, Operation.EMAIL, record)
        return await self._deliver(record)

    async def send_pending_emails(self, actor: Actor | None) -> list[DeliveryResult]:
        """Email every completed backup that has not been sent yet."""
        require(actor, Operation.EMAIL, BackupScope.SYSTEM)
        results = []
        for pending in await self.registry.pending_email():
            record = await self.registry.get(pending.id)
            results.append(await self._deliver(record))
        return results

    async def _deliver(self, record: BackupRecord) -> DeliveryResult:
        if self.dispatcher is None:
            raise FatalError("No delivery dispatcher configured")
        if record.status is not BackupStatus.COMPLETED:
            raise FatalError(f"Backup {record.id} is {record.status.value} and cannot be sent")

        recipients = await self.registry.list_recipients(active_only=True)
        result = await self.dispatcher.deliver(record, recipients)
        if result.status == "sent":
            await self.registry.mark_email_sent(record.id)
        return result

    # ------------------------------------------------------------------
    # Settings and recipients (platform operators only)
    # ------------------------------------------------------------------

    async def get_settings(self, actor: Actor | None) -> GlobalBackupSettings:
        require(actor, Operation.SETTINGS, BackupScope.SYSTEM)
        return await self.registry.get_settings()

    async def update_settings(self, actor: Actor | None, **changes: Any) -> GlobalBackupSettings:
        require(actor, Operation.SETTINGS, BackupScope.SYSTEM)
        return await self.registry.update_settings(**changes)

    async def list_recipients(self, actor: Actor | None) -> list[EmailRecipient]:
        require(actor, Operation.SETTINGS, BackupScope.SYSTEM)
        return await self.registry.list_recipients()

    async def add_recipient(
        self, actor: Actor | None, email: str, name: str | None = None
    ) -> EmailRecipient:
        require(actor, Operation.SETTINGS, BackupScope.SYSTEM)
        return await self.registry.add_recipient(email, name)

    async def set_recipient_active(
        self, actor: Actor | None, recipient_id: str, active: bool
    ) -> EmailRecipient:
        require(actor, Operation.SETTINGS, BackupScope.SYSTEM)
        return await self.registry.set_recipient_active(recipient_id, active)

    async def remove_recipient(self, actor: Actor | None, recipient_id: str) -> None:
        require(actor, Operation.SETTINGS, BackupScope.SYSTEM)
        await self.registry.remove_recipient(recipient_id)
