"""Backup registry: catalog of backup records, schedule settings, recipients.

Everything is stored through a ``DatabaseClient`` in three tables:

- ``backups`` -- one row per ``BackupRecord`` (``document`` is JSONB)
- ``global_backup_settings`` -- the singleton ``GlobalBackupSettings`` row
- ``backup_email_recipients`` -- ``EmailRecipient`` rows

A failure of the store itself surfaces as ``FatalError``; a missing record
as ``NotFoundError``.

Usage:
    registry = BackupRegistry(adapter)
    record = await registry.create_record(BackupScope.TENANT, tenant_id="acme")
    record = await registry.finalize(record.id, BackupStatus.COMPLETED, document=doc)
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.backup.models import (
    STATUS_TRANSITIONS,
    BackupRecord,
    BackupScope,
    BackupStats,
    BackupStatus,
    BackupType,
    EmailRecipient,
    GlobalBackupSettings,
)
from tenant_backup.errors import BackupError, FatalError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKUPS_TABLE = "backups"
SETTINGS_TABLE = "global_backup_settings"
RECIPIENTS_TABLE = "backup_email_recipients"

# Columns returned by listings (everything except the document payload).
LIST_COLUMNS = (
    "id, tenant_id, scope, backup_type, status, tables_included, size_bytes, "
    "created_by, created_at, email_sent, email_sent_at, notes, table_errors"
)

SCHEDULE_FIELDS = frozenset({"hour", "minute", "frequency_hours", "auto_backup_enabled"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_next_run(settings: GlobalBackupSettings, last_run_at: datetime) -> datetime:
    """Next scheduled run after ``last_run_at``.

    The schedule is anchored to ``hour:minute``: the anchor is
    ``last_run_at``'s date at that time (one day earlier if that lies after
    ``last_run_at``), and the next run is the first ``anchor + k *
    frequency_hours`` strictly after ``last_run_at``.

    Example:
        compute_next_run(
            GlobalBackupSettings(hour=3, minute=0, frequency_hours=24),
            datetime(2024, 1, 1, 3, 0),
        )
        # datetime(2024, 1, 2, 3, 0)
    """
    anchor = last_run_at.replace(
        hour=settings.hour, minute=settings.minute, second=0, microsecond=0
    )
    if anchor > last_run_at:
        anchor -= timedelta(days=1)

    step = timedelta(hours=settings.frequency_hours)
    next_run = anchor + step
    while next_run <= last_run_at:
        next_run += step
    return next_run


def check_transition(current: BackupStatus, new: BackupStatus) -> None:
    """Raise ``FatalError`` unless ``current -> new`` is an allowed edge."""
    if new not in STATUS_TRANSITIONS[current]:
        raise FatalError(f"Illegal backup status transition {current.value} -> {new.value}")


def _to_row(model: BaseModel, exclude: set[str] | None = None) -> dict[str, Any]:
    row = model.model_dump(exclude=exclude)
    return {k: v.value if isinstance(v, Enum) else v for k, v in row.items()}


class BackupRegistry:
    """Persistence for backup records, global settings, and recipients.

    Args:
        adapter: Database adapter implementing ``DatabaseClient``.
        clock: Returns the current time (UTC); injectable for tests.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._adapter = adapter
        self._clock = clock

    async def _store(self, action: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except BackupError:
            raise
        except Exception as e:
            raise FatalError(f"Backup store unavailable ({action}): {e}") from e

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def create_record(
        self,
        scope: BackupScope,
        tenant_id: str | None = None,
        backup_type: BackupType = BackupType.MANUAL,
        created_by: str | None = None,
        notes: str | None = None,
    ) -> BackupRecord:
        """Register a new capture in ``in_progress`` state."""
        record = BackupRecord(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            scope=scope,
            backup_type=backup_type,
            status=BackupStatus.IN_PROGRESS,
            created_by=created_by,
            created_at=self._clock(),
            notes=notes,
        )
        await self._store("create", self._adapter.insert(BACKUPS_TABLE, _to_row(record)))
        logger.info("Backup %s started (%s, tenant=%s)", record.id, scope.value, tenant_id)
        return record

    async def finalize(
        self,
        record_id: str,
        status: BackupStatus,
        document: dict[str, Any] | None = None,
        tables_included: list[str] | None = None,
        size_bytes: int = 0,
        table_errors: dict[str, str] | None = None,
    ) -> BackupRecord:
        """Close an ``in_progress`` record, writing its document once.

        Raises:
            FatalError: If the record is not ``in_progress`` or ``status``
                is not a terminal capture state.
        """
        record = await self.get(record_id)
        check_transition(record.status, status)

        changes: dict[str, Any] = {
            "status": status.value,
            "document": document,
            "tables_included": tables_included or [],
            "size_bytes": size_bytes,
            "table_errors": table_errors or {},
        }
        await self._store(
            "finalize",
            self._adapter.update(BACKUPS_TABLE, data=changes, filters={"id": record_id}),
        )
        logger.info("Backup %s finalized as %s (%d bytes)", record_id, status.value, size_bytes)
        return record.model_copy(update={**changes, "status": status})

    async def get(self, record_id: str) -> BackupRecord:
        rows = await self._store(
            "get", self._adapter.select(BACKUPS_TABLE, "*", filters={"id": record_id})
        )
        if not rows:
            raise NotFoundError(f"Backup '{record_id}' not found")
        return BackupRecord.model_validate(rows[0])

    async def list_records(
        self,
        tenant_id: str | None = None,
        scope: BackupScope | None = None,
    ) -> list[BackupRecord]:
        """Records without their documents, newest first."""
        filters: dict[str, Any] = {}
        if tenant_id is not None:
            filters["tenant_id"] = tenant_id
        if scope is not None:
            filters["scope"] = scope.value
        rows = await self._store(
            "list", self._adapter.select(BACKUPS_TABLE, LIST_COLUMNS, filters=filters or None)
        )
        records = [BackupRecord.model_validate(row) for row in rows]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def delete(self, record_id: str) -> None:
        deleted = await self._store(
            "delete", self._adapter.delete(BACKUPS_TABLE, {"id": record_id})
        )
        if not deleted:
            raise NotFoundError(f"Backup '{record_id}' not found")
        logger.info("Backup %s deleted", record_id)

    async def set_status(self, record_id: str, status: BackupStatus) -> BackupRecord:
        """Move a record along an allowed status edge."""
        record = await self.get(record_id)
        check_transition(record.status, status)
        await self._store(
            "set_status",
            self._adapter.update(
                BACKUPS_TABLE, data={"status": status.value}, filters={"id": record_id}
            ),
        )
        return record.model_copy(update={"status": status})

    async def mark_email_sent(self, record_id: str, at: datetime | None = None) -> None:
        await self._store(
            "mark_email_sent",
            self._adapter.update(
                BACKUPS_TABLE,
                data={"email_sent": True, "email_sent_at": at or self._clock()},
                filters={"id": record_id},
            ),
        )

    async def pending_email(self) -> list[BackupRecord]:
        """Completed records that have not been emailed yet."""
        records = await self.list_records()
        return [
            r for r in records
            if r.status is BackupStatus.COMPLETED and not r.email_sent
        ]

    async def stats(self, tenant_id: str | None = None) -> BackupStats:
        records = await self.list_records(tenant_id=tenant_id)
        return BackupStats(
            total_backups=len(records),
            total_size_bytes=sum(r.size_bytes for r in records),
            emails_sent=sum(1 for r in records if r.email_sent),
            last_backup_at=records[0].created_at if records else None,
        )

    # ------------------------------------------------------------------
    # Global settings
    # ------------------------------------------------------------------

    async def get_settings(self) -> GlobalBackupSettings:
        """Return the singleton settings row, creating it on first use."""
        rows = await self._store("settings", self._adapter.select(SETTINGS_TABLE, "*"))
        if rows:
            return GlobalBackupSettings.model_validate(rows[0])

        settings = GlobalBackupSettings()
        await self._store("settings", self._adapter.insert(SETTINGS_TABLE, _to_row(settings)))
        return settings

    async def update_settings(self, **changes: Any) -> GlobalBackupSettings:
        """Apply changes to the settings; schedule changes recompute ``next_run_at``.

        Raises:
            FatalError: On unknown setting names or invalid values.
        """
        unknown = set(changes) - set(GlobalBackupSettings.model_fields) - {"id"}
        if unknown:
            raise FatalError(f"Unknown backup settings: {', '.join(sorted(unknown))}")

        current = await self.get_settings()
        try:
            updated = GlobalBackupSettings.model_validate(
                {**current.model_dump(), **changes, "id": current.id}
            )
        except ValueError as e:
            raise FatalError(f"Invalid backup settings: {e}") from e

        if SCHEDULE_FIELDS & set(changes) and "next_run_at" not in changes:
            updated.next_run_at = compute_next_run(
                updated, updated.last_run_at or self._clock()
            )

        await self._store(
            "settings",
            self._adapter.update(
                SETTINGS_TABLE, data=_to_row(updated, exclude={"id"}), filters={"id": current.id}
            ),
        )
        return updated

    async def record_run(self, ran_at: datetime) -> GlobalBackupSettings:
        """Stamp an automatic run and schedule the next one."""
        settings = await self.get_settings()
        settings.last_run_at = ran_at
        settings.next_run_at = compute_next_run(settings, ran_at)
        await self._store(
            "settings",
            self._adapter.update(
                SETTINGS_TABLE,
                data={"last_run_at": ran_at, "next_run_at": settings.next_run_at},
                filters={"id": settings.id},
            ),
        )
        logger.info("Next automatic backup at %s", settings.next_run_at.isoformat())
        return settings

    # ------------------------------------------------------------------
    # Recipients
    # ------------------------------------------------------------------

    async def list_recipients(self, active_only: bool = False) -> list[EmailRecipient]:
        filters = {"active": True} if active_only else None
        rows = await self._store(
            "recipients", self._adapter.select(RECIPIENTS_TABLE, "*", filters=filters)
        )
        recipients = [EmailRecipient.model_validate(row) for row in rows]
        return sorted(recipients, key=lambda r: r.email)

    async def add_recipient(self, email: str, name: str | None = None) -> EmailRecipient:
        """Raises ``FatalError`` if the address is malformed or already present."""
        email = email.strip().lower()
        if "@" not in email:
            raise FatalError(f"Invalid email address '{email}'")
        existing = await self._store(
            "recipients", self._adapter.select(RECIPIENTS_TABLE, "id", filters={"email": email})
        )
        if existing:
            raise FatalError(f"Recipient '{email}' already exists")

        recipient = EmailRecipient(id=str(uuid.uuid4()), email=email, name=name)
        await self._store(
            "recipients", self._adapter.insert(RECIPIENTS_TABLE, _to_row(recipient))
        )
        return recipient

    async def set_recipient_active(self, recipient_id: str, active: bool) -> EmailRecipient:
        rows = await self._store(
            "recipients",
            self._adapter.select(RECIPIENTS_TABLE, "*", filters={"id": recipient_id}),
        )
        if not rows:
            raise NotFoundError(f"Recipient '{recipient_id}' not found")
        await self._store(
            "recipients",
            self._adapter.update(
                RECIPIENTS_TABLE, data={"active": active}, filters={"id": recipient_id}
            ),
        )
        return EmailRecipient.model_validate({**rows[0], "active": active})

    async def remove_recipient(self, recipient_id: str) -> None:
        deleted = await self._store(
            "recipients", self._adapter.delete(RECIPIENTS_TABLE, {"id": recipient_id})
        )
        if not deleted:
            raise NotFoundError(f"Recipient '{recipient_id}' not found")
