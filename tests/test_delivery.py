"""Tests for SMTP delivery of backups."""

import json
import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from tenant_backup.backup.models import BackupRecord, BackupScope, BackupStatus, EmailRecipient
from tenant_backup.config.models import DeliveryOptions, SmtpSettings
from tenant_backup.delivery import SmtpDeliveryDispatcher, attachment_name, build_message


def _record(document: dict | None = None, tenant_id: str | None = "acme") -> BackupRecord:
    return BackupRecord(
        id="b1",
        tenant_id=tenant_id,
        scope=BackupScope.TENANT if tenant_id else BackupScope.SYSTEM,
        status=BackupStatus.COMPLETED,
        document=document,
        size_bytes=123,
        created_at=datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc),
    )


def _options(host: str | None = "smtp.example.com", fallback: str | None = None) -> DeliveryOptions:
    return DeliveryOptions(
        smtp=SmtpSettings(host=host, user="mailer", password="secret", sender="backup@example.com"),
        fallback_recipient=fallback,
    )


def _recipient(email: str, active: bool = True) -> EmailRecipient:
    return EmailRecipient(id=email, email=email, active=active)


class TestMessage:
    """Message composition."""

    def test_attachment_name(self) -> None:
        assert attachment_name(_record()) == "backup_tenant_acme_2024-01-01.json"
        assert attachment_name(_record(tenant_id=None)) == "backup_system_all_2024-01-01.json"

    def test_document_is_attached(self) -> None:
        msg = build_message(_record(document={"data": {"acme": {}}}), "from@x.com", ["a@x.com"])

        assert msg["To"] == "a@x.com"
        assert "acme" in msg["Subject"]
        attachment = next(msg.iter_attachments())
        assert attachment.get_filename() == "backup_tenant_acme_2024-01-01.json"
        assert json.loads(attachment.get_content()) == {"data": {"acme": {}}}


class TestSmtpDispatcher:
    """SmtpDeliveryDispatcher.deliver outcomes."""

    def test_fallback_when_no_active_recipient(self) -> None:
        dispatcher = SmtpDeliveryDispatcher(_options(fallback="ops@example.com"))
        assert dispatcher.resolve_recipients([_recipient("a@x.com", active=False)]) == [
            "ops@example.com"
        ]
        assert dispatcher.resolve_recipients([_recipient("a@x.com")]) == ["a@x.com"]

    async def test_no_recipients(self) -> None:
        result = await SmtpDeliveryDispatcher(_options()).deliver(_record(document={}), [])
        assert result.status == "failed"
        assert result.error == "No email recipients configured"

    async def test_no_document(self) -> None:
        result = await SmtpDeliveryDispatcher(_options()).deliver(
            _record(document=None), [_recipient("a@x.com")]
        )
        assert result.status == "failed"
        assert result.error == "Backup has no document to send"

    async def test_sends_over_smtp(self) -> None:
        with patch("tenant_backup.delivery.smtplib.SMTP") as smtp_cls:
            server = MagicMock()
            smtp_cls.return_value.__enter__.return_value = server

            result = await SmtpDeliveryDispatcher(_options()).deliver(
                _record(document={"data": {}}), [_recipient("a@x.com"), _recipient("b@x.com")]
            )

        assert result.status == "sent"
        assert result.recipients == ["a@x.com", "b@x.com"]
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")
        sent = server.send_message.call_args.args[0]
        assert sent["From"] == "backup@example.com"

    async def test_smtp_error_is_reported(self) -> None:
        with patch("tenant_backup.delivery.smtplib.SMTP") as smtp_cls:
            server = MagicMock()
            server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
            smtp_cls.return_value.__enter__.return_value = server

            result = await SmtpDeliveryDispatcher(_options()).deliver(
                _record(document={}), [_recipient("a@x.com")]
            )

        assert result.status == "failed"
        assert result.recipients == ["a@x.com"]

    async def test_missing_host(self) -> None:
        result = await SmtpDeliveryDispatcher(_options(host=None)).deliver(
            _record(document={}), [_recipient("a@x.com")]
        )
        assert result.status == "failed"
        assert result.error == "SMTP host not configured"
