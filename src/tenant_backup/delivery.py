"""Backup delivery: email a finished snapshot to the configured recipients.

``DeliveryDispatcher`` is the interface the service layer talks to.
``SmtpDeliveryDispatcher`` sends one message per backup over SMTP with the
snapshot attached as JSON.  ``smtplib`` is blocking, so the send runs in a
worker thread.

Usage:
    dispatcher = SmtpDeliveryDispatcher(config.delivery)
    result = await dispatcher.deliver(record, recipients)
    if result.status == "failed":
        print(result.error)
"""

import asyncio
import json
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Literal, Protocol

from pydantic import BaseModel, Field

from tenant_backup.backup.models import BackupRecord, EmailRecipient
from tenant_backup.config.models import DeliveryOptions

logger = logging.getLogger(__name__)


class DeliveryResult(BaseModel):
    backup_id: str
    status: Literal["sent", "failed"]
    recipients: list[str] = Field(default_factory=list)
    error: str | None = None


class DeliveryDispatcher(Protocol):
    """Sends a backup record's document somewhere outside the database."""

    async def deliver(
        self, record: BackupRecord, recipients: list[EmailRecipient]
    ) -> DeliveryResult:
        ...


def attachment_name(record: BackupRecord) -> str:
    """``backup_<scope>_<tenant|all>_<YYYY-MM-DD>.json``"""
    owner = record.tenant_id or "all"
    return f"backup_{record.scope.value}_{owner}_{record.created_at:%Y-%m-%d}.json"


def build_message(record: BackupRecord, sender: str, to: list[str]) -> EmailMessage:
    """Compose the email for a record; the document must be loaded."""
    owner = record.tenant_id or "all tenants"
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = ", ".join(to)
    msg["Subject"] = f"Backup ({record.scope.value}) - {owner} - {record.created_at:%Y-%m-%d %H:%M}"
    msg.set_content(
        f"Backup {record.id}\n"
        f"Scope: {record.scope.value}\n"
        f"Tenant: {owner}\n"
        f"Type: {record.backup_type.value}\n"
        f"Created: {record.created_at.isoformat()}\n"
        f"Size: {record.size_bytes} bytes\n"
    )
    payload = json.dumps(record.document, default=str).encode("utf-8")
    msg.add_attachment(
        payload,
        maintype="application",
        subtype="json",
        filename=attachment_name(record),
    )
    return msg


class SmtpDeliveryDispatcher:
    """SMTP implementation of ``DeliveryDispatcher``.

    Args:
        options: Delivery options (SMTP settings and fallback recipient).
    """

    def __init__(self, options: DeliveryOptions) -> None:
        self._options = options

    def resolve_recipients(self, recipients: list[EmailRecipient]) -> list[str]:
        """Active recipient addresses, or the fallback address when none."""
        addresses = [r.email for r in recipients if r.active]
        if not addresses and self._options.fallback_recipient:
            addresses = [self._options.fallback_recipient]
        return addresses

    async def deliver(
        self, record: BackupRecord, recipients: list[EmailRecipient]
    ) -> DeliveryResult:
        to = self.resolve_recipients(recipients)
        if not to:
            return DeliveryResult(
                backup_id=record.id,
                status="failed",
                error="No email recipients configured",
            )
        if record.document is None:
            return DeliveryResult(
                backup_id=record.id,
                status="failed",
                recipients=to,
                error="Backup has no document to send",
            )

        msg = build_message(record, self._options.smtp.sender, to)
        try:
            await asyncio.to_thread(self._send, msg)
        except (OSError, smtplib.SMTPException, RuntimeError) as e:
            logger.warning("Email for backup %s failed: %s", record.id, e)
            return DeliveryResult(backup_id=record.id, status="failed", recipients=to, error=str(e))

        logger.info("Email for backup %s sent to %d recipients", record.id, len(to))
        return DeliveryResult(backup_id=record.id, status="sent", recipients=to)

    def _send(self, msg: EmailMessage) -> None:
        smtp = self._options.smtp
        if not smtp.host:
            raise RuntimeError("SMTP host not configured")

        context = ssl.create_default_context()
        with smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout) as server:
            server.ehlo()
            if smtp.use_tls:
                server.starttls(context=context)
                server.ehlo()
            if smtp.user and smtp.password:
                server.login(smtp.user, smtp.password)
            server.send_message(msg)
