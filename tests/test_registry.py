"""Tests for the backup registry and schedule arithmetic."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeDatabase
from tenant_backup.backup.models import (
    BackupScope,
    BackupStatus,
    BackupType,
    GlobalBackupSettings,
)
from tenant_backup.errors import FatalError, NotFoundError
from tenant_backup.registry import (
    BACKUPS_TABLE,
    SETTINGS_TABLE,
    BackupRegistry,
    check_transition,
    compute_next_run,
)

UTC = timezone.utc


class TestComputeNextRun:
    """Next run is anchored to hour:minute and strictly after the last run."""

    def test_daily_at_exact_slot(self) -> None:
        settings = GlobalBackupSettings(hour=3, minute=0, frequency_hours=24)
        last = datetime(2024, 1, 1, 3, 0, tzinfo=UTC)
        assert compute_next_run(settings, last) == datetime(2024, 1, 2, 3, 0, tzinfo=UTC)

    def test_daily_before_slot(self) -> None:
        settings = GlobalBackupSettings(hour=3, minute=30, frequency_hours=24)
        last = datetime(2024, 1, 1, 1, 0, tzinfo=UTC)
        assert compute_next_run(settings, last) == datetime(2024, 1, 1, 3, 30, tzinfo=UTC)

    def test_daily_after_slot(self) -> None:
        settings = GlobalBackupSettings(hour=3, minute=0, frequency_hours=24)
        last = datetime(2024, 1, 1, 17, 45, tzinfo=UTC)
        assert compute_next_run(settings, last) == datetime(2024, 1, 2, 3, 0, tzinfo=UTC)

    def test_every_six_hours(self) -> None:
        settings = GlobalBackupSettings(hour=3, minute=0, frequency_hours=6)
        last = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
        assert compute_next_run(settings, last) == datetime(2024, 1, 1, 15, 0, tzinfo=UTC)

    def test_weekly(self) -> None:
        settings = GlobalBackupSettings(hour=2, minute=0, frequency_hours=168)
        last = datetime(2024, 1, 1, 2, 0, tzinfo=UTC)
        assert compute_next_run(settings, last) == last + timedelta(days=7)

    def test_always_after_last_run(self) -> None:
        settings = GlobalBackupSettings(hour=23, minute=59, frequency_hours=1)
        last = datetime(2024, 3, 10, 12, 15, tzinfo=UTC)
        next_run = compute_next_run(settings, last)
        assert last < next_run <= last + timedelta(hours=1)
        assert next_run.minute == 59


class TestStatusTransitions:
    """Only the documented status edges are allowed."""

    @pytest.mark.parametrize(
        "current, new",
        [
            (BackupStatus.IN_PROGRESS, BackupStatus.COMPLETED),
            (BackupStatus.IN_PROGRESS, BackupStatus.FAILED),
            (BackupStatus.COMPLETED, BackupStatus.RESTORING),
            (BackupStatus.RESTORING, BackupStatus.COMPLETED),
        ],
    )
    def test_allowed(self, current: BackupStatus, new: BackupStatus) -> None:
        check_transition(current, new)

    @pytest.mark.parametrize(
        "current, new",
        [
            (BackupStatus.FAILED, BackupStatus.COMPLETED),
            (BackupStatus.COMPLETED, BackupStatus.IN_PROGRESS),
            (BackupStatus.COMPLETED, BackupStatus.FAILED),
            (BackupStatus.IN_PROGRESS, BackupStatus.RESTORING),
        ],
    )
    def test_rejected(self, current: BackupStatus, new: BackupStatus) -> None:
        with pytest.raises(FatalError, match="Illegal backup status transition"):
            check_transition(current, new)


class TestRecords:
    """Record lifecycle in the backups table."""

    async def test_create_and_finalize(self, registry: BackupRegistry, fixed_now: datetime) -> None:
        record = await registry.create_record(
            BackupScope.TENANT, tenant_id="acme", created_by="u1", notes="before import"
        )
        assert record.status is BackupStatus.IN_PROGRESS
        assert record.created_at == fixed_now

        final = await registry.finalize(
            record.id,
            BackupStatus.COMPLETED,
            document={"backup_info": {}, "data": {}},
            tables_included=["employees"],
            size_bytes=42,
        )
        assert final.status is BackupStatus.COMPLETED

        stored = await registry.get(record.id)
        assert stored.status is BackupStatus.COMPLETED
        assert stored.document == {"backup_info": {}, "data": {}}
        assert stored.size_bytes == 42
        assert stored.notes == "before import"

    async def test_finalize_twice_rejected(self, registry: BackupRegistry) -> None:
        record = await registry.create_record(BackupScope.SYSTEM)
        await registry.finalize(record.id, BackupStatus.FAILED)
        with pytest.raises(FatalError):
            await registry.finalize(record.id, BackupStatus.COMPLETED)

    async def test_get_unknown(self, registry: BackupRegistry) -> None:
        with pytest.raises(NotFoundError):
            await registry.get("missing")

    async def test_list_filters_and_omits_document(
        self, db: FakeDatabase, registry: BackupRegistry
    ) -> None:
        acme = await registry.create_record(BackupScope.TENANT, tenant_id="acme")
        await registry.finalize(acme.id, BackupStatus.COMPLETED, document={"data": {}})
        await registry.create_record(BackupScope.TENANT, tenant_id="globex")
        await registry.create_record(BackupScope.SYSTEM)

        assert len(await registry.list_records()) == 3
        only_acme = await registry.list_records(tenant_id="acme")
        assert [r.id for r in only_acme] == [acme.id]
        assert only_acme[0].document is None
        assert len(await registry.list_records(scope=BackupScope.SYSTEM)) == 1

    async def test_list_newest_first(self, db: FakeDatabase) -> None:
        times = iter([
            datetime(2024, 1, 1, tzinfo=UTC),
            datetime(2024, 1, 3, tzinfo=UTC),
            datetime(2024, 1, 2, tzinfo=UTC),
        ])
        registry = BackupRegistry(db, clock=lambda: next(times))
        for _ in range(3):
            await registry.create_record(BackupScope.SYSTEM)

        days = [r.created_at.day for r in await registry.list_records()]
        assert days == [3, 2, 1]

    async def test_delete(self, registry: BackupRegistry) -> None:
        record = await registry.create_record(BackupScope.SYSTEM)
        await registry.delete(record.id)
        with pytest.raises(NotFoundError):
            await registry.delete(record.id)

    async def test_email_and_stats(self, registry: BackupRegistry, fixed_now: datetime) -> None:
        first = await registry.create_record(BackupScope.TENANT, tenant_id="acme")
        await registry.finalize(first.id, BackupStatus.COMPLETED, document={}, size_bytes=100)
        second = await registry.create_record(
            BackupScope.TENANT, tenant_id="acme", backup_type=BackupType.AUTOMATIC
        )
        await registry.finalize(second.id, BackupStatus.COMPLETED, document={}, size_bytes=50)

        assert {r.id for r in await registry.pending_email()} == {first.id, second.id}
        await registry.mark_email_sent(first.id)
        assert [r.id for r in await registry.pending_email()] == [second.id]

        stats = await registry.stats(tenant_id="acme")
        assert stats.total_backups == 2
        assert stats.total_size_bytes == 150
        assert stats.emails_sent == 1
        assert stats.last_backup_at == fixed_now

    async def test_store_failure_is_fatal(self, db: FakeDatabase, registry: BackupRegistry) -> None:
        db.fail[("insert", BACKUPS_TABLE)] = ConnectionError("connection reset")
        with pytest.raises(FatalError, match="Backup store unavailable"):
            await registry.create_record(BackupScope.SYSTEM)


class TestSettings:
    """The global settings singleton."""

    async def test_defaults_created_on_first_use(
        self, db: FakeDatabase, registry: BackupRegistry
    ) -> None:
        settings = await registry.get_settings()
        assert not settings.auto_backup_enabled
        assert (settings.hour, settings.minute, settings.frequency_hours) == (3, 0, 24)
        assert len(db.rows(SETTINGS_TABLE)) == 1
        await registry.get_settings()
        assert len(db.rows(SETTINGS_TABLE)) == 1

    async def test_schedule_change_recomputes_next_run(self, registry: BackupRegistry) -> None:
        settings = await registry.update_settings(auto_backup_enabled=True, hour=5)
        # clock is 2024-01-01 03:00
        assert settings.next_run_at == datetime(2024, 1, 1, 5, 0, tzinfo=UTC)
        assert (await registry.get_settings()).next_run_at == settings.next_run_at

    async def test_non_schedule_change_keeps_next_run(self, registry: BackupRegistry) -> None:
        await registry.update_settings(auto_backup_enabled=True)
        settings = await registry.update_settings(auto_email_enabled=True)
        assert settings.auto_email_enabled
        assert settings.next_run_at == datetime(2024, 1, 2, 3, 0, tzinfo=UTC)

    async def test_unknown_setting(self, registry: BackupRegistry) -> None:
        with pytest.raises(FatalError, match="Unknown backup settings: colour"):
            await registry.update_settings(colour="blue")

    async def test_invalid_value(self, registry: BackupRegistry) -> None:
        with pytest.raises(FatalError, match="Invalid backup settings"):
            await registry.update_settings(hour=25)

    async def test_record_run(self, registry: BackupRegistry, fixed_now: datetime) -> None:
        settings = await registry.record_run(fixed_now)
        assert settings.last_run_at == fixed_now
        assert settings.next_run_at == datetime(2024, 1, 2, 3, 0, tzinfo=UTC)
        stored = await registry.get_settings()
        assert stored.last_run_at == fixed_now


class TestRecipients:
    """Email recipient management."""

    async def test_add_normalizes_and_sorts(self, registry: BackupRegistry) -> None:
        await registry.add_recipient(" Ops@Example.com ", "Ops")
        await registry.add_recipient("cfo@example.com")
        emails = [r.email for r in await registry.list_recipients()]
        assert emails == ["cfo@example.com", "ops@example.com"]

    async def test_duplicate_rejected(self, registry: BackupRegistry) -> None:
        await registry.add_recipient("ops@example.com")
        with pytest.raises(FatalError, match="already exists"):
            await registry.add_recipient("OPS@example.com")

    async def test_invalid_address(self, registry: BackupRegistry) -> None:
        with pytest.raises(FatalError, match="Invalid email"):
            await registry.add_recipient("not-an-address")

    async def test_deactivate_and_remove(self, registry: BackupRegistry) -> None:
        ops = await registry.add_recipient("ops@example.com")
        await registry.add_recipient("cfo@example.com")

        updated = await registry.set_recipient_active(ops.id, False)
        assert not updated.active
        assert [r.email for r in await registry.list_recipients(active_only=True)] == [
            "cfo@example.com"
        ]

        await registry.remove_recipient(ops.id)
        assert len(await registry.list_recipients()) == 1
        with pytest.raises(NotFoundError):
            await registry.remove_recipient(ops.id)
        with pytest.raises(NotFoundError):
            await registry.set_recipient_active(ops.id, True)
