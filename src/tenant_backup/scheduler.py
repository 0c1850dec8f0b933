"""Scheduled automatic system backups.

The engine does not own a timer.  An external trigger (cron, a platform
scheduler, the ``run-scheduled`` CLI command) calls
``run_scheduled_backup`` periodically; it only does work when the global
settings say a run is due.

Usage:
    result = await run_scheduled_backup(service)
    if result.ran:
        print(result.backup_id, result.next_run_at)
"""

import logging
from datetime import datetime

from pydantic import BaseModel

from tenant_backup.auth import SYSTEM_ACTOR
from tenant_backup.backup.models import BackupScope, BackupStatus, BackupType, GlobalBackupSettings
from tenant_backup.delivery import DeliveryResult
from tenant_backup.errors import CaptureFailedError
from tenant_backup.registry import utcnow
from tenant_backup.service import BackupService, CaptureRequest

logger = logging.getLogger(__name__)


class ScheduledRunResult(BaseModel):
    ran: bool
    backup_id: str | None = None
    status: BackupStatus | None = None
    next_run_at: datetime | None = None
    email: DeliveryResult | None = None
    error: str | None = None


def is_due(settings: GlobalBackupSettings, now: datetime) -> bool:
    """Whether an automatic backup should run at ``now``.

    Never due while automatic backups are disabled.  Without a recorded
    ``next_run_at`` the first run happens once today's ``hour:minute``
    has passed.
    """
    if not settings.auto_backup_enabled:
        return False
    if settings.next_run_at is not None:
        return now >= settings.next_run_at
    today_slot = now.replace(
        hour=settings.hour, minute=settings.minute, second=0, microsecond=0
    )
    return now >= today_slot


async def run_scheduled_backup(
    service: BackupService,
    now: datetime | None = None,
) -> ScheduledRunResult:
    """Run a system backup if one is due, then schedule the next run.

    A failed capture still counts as a run: ``last_run_at`` and
    ``next_run_at`` advance and the error is returned in the result.
    """
    now = now or utcnow()
    settings = await service.registry.get_settings()
    if not is_due(settings, now):
        logger.debug("Automatic backup not due (next at %s)", settings.next_run_at)
        return ScheduledRunResult(ran=False, next_run_at=settings.next_run_at)

    logger.info("Running automatic system backup")
    result = ScheduledRunResult(ran=True)
    try:
        response = await service.capture(
            CaptureRequest(scope=BackupScope.SYSTEM, backup_type=BackupType.AUTOMATIC),
            SYSTEM_ACTOR,
        )
        result.backup_id = response.backup_id
        result.status = response.status
    except CaptureFailedError as e:
        result.backup_id = e.backup_id
        result.status = BackupStatus.FAILED
        result.error = str(e)
    finally:
        updated = await service.registry.record_run(now)
        result.next_run_at = updated.next_run_at

    if (
        result.status is BackupStatus.COMPLETED
        and settings.auto_email_enabled
        and service.dispatcher is not None
    ):
        result.email = await service.send_backup_email(result.backup_id, SYSTEM_ACTOR)

    return result
