"""Tests for the tenant-backup CLI."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import FakeDatabase, seed_tenant
from tenant_backup.backup.manifest import DEFAULT_MANIFEST, TENANT_SETTINGS_KEY
from tenant_backup.cli import build_parser, main
from tenant_backup.config.models import BackupConfig
from tenant_backup.registry import BACKUPS_TABLE


def _write_backup(path: Path, version: str = "2.0") -> Path:
    data = {name: [] for name in DEFAULT_MANIFEST.table_names}
    data["employees"] = [{"id": "e1", "tenant_id": "acme"}]
    data[TENANT_SETTINGS_KEY] = [{"id": "acme", "name": "Acme"}]
    path.write_text(json.dumps({
        "backup_info": {
            "version": version,
            "scope": "tenant",
            "createdAt": "2024-01-01T03:00:00Z",
            "tenantCount": 1,
            "totalRecords": 2,
        },
        "data": {"acme": data},
    }))
    return path


class TestParser:
    """Argument parsing."""

    def test_subcommand_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_capture_needs_target(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["capture"])

    def test_restore_options(self) -> None:
        args = build_parser().parse_args([
            "restore", "--backup-id", "b1", "--target", "acme",
            "--tables", "employees,positions", "--id-strategy", "remap", "--atomic",
        ])
        assert args.target == "acme"
        assert args.atomic
        assert not args.confirm

    def test_settings_flags(self) -> None:
        args = build_parser().parse_args(["settings", "set", "--disable", "--no-email", "--hour", "4"])
        assert args.enabled is False
        assert args.email is False
        assert args.minute is None


class TestValidateCommand:
    """validate works on files without a database."""

    def test_valid_file(self, tmp_path: Path) -> None:
        path = _write_backup(tmp_path / "acme.json")
        assert main(["validate", str(path)]) == 0

    def test_unsupported_version(self, tmp_path: Path) -> None:
        path = _write_backup(tmp_path / "acme.json", version="9.9")
        assert main(["validate", str(path)]) == 1

    def test_missing_file(self, tmp_path: Path) -> None:
        assert main(["validate", str(tmp_path / "nope.json")]) == 1


class TestManifestCommand:
    """manifest prints the table manifest."""

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["manifest", "--json"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert len(out["entries"]) == len(DEFAULT_MANIFEST.entries)
        assert out["tenant_field"] == "tenant_id"

    def test_table_output(self) -> None:
        assert main(["manifest"]) == 0


class TestServiceCommands:
    """Commands that run against a database (in-memory here)."""

    def _run(self, db: FakeDatabase, argv: list[str]) -> int:
        with patch("tenant_backup.cli.load_config", return_value=BackupConfig()), \
                patch("tenant_backup.cli.get_adapter", return_value=db):
            return main(argv)

    def test_restore_requires_confirm(self) -> None:
        with patch("tenant_backup.cli.load_config") as load:
            code = main(["restore", "--backup-id", "b1", "--target", "acme"])
        assert code == 0
        load.assert_not_called()

    def test_capture_tenant(self, db: FakeDatabase) -> None:
        seed_tenant(db, "acme")

        assert self._run(db, ["capture", "--tenant", "acme"]) == 0

        records = db.rows(BACKUPS_TABLE)
        assert len(records) == 1
        assert records[0]["status"] == "completed"
        assert records[0]["created_by"] == "cli"
        assert db.closed

    def test_capture_as_tenant_member_denied(self, db: FakeDatabase) -> None:
        seed_tenant(db, "acme")
        code = self._run(
            db, ["--as-tenant", "acme", "--as-role", "employee", "capture", "--tenant", "acme"]
        )
        assert code == 1
        assert db.rows(BACKUPS_TABLE) == []

    def test_restore_file_into_clone(self, db: FakeDatabase, tmp_path: Path) -> None:
        path = _write_backup(tmp_path / "acme.json")

        code = self._run(
            db, ["restore", "--file", str(path), "--target", "acme-clone", "--confirm"]
        )

        assert code == 0
        assert len(db.rows("employees", tenant_id="acme-clone")) == 1
        assert db.rows("tenants", id="acme-clone")[0]["name"] == "Acme"

    def test_restore_missing_file(self, db: FakeDatabase, tmp_path: Path) -> None:
        code = self._run(
            db,
            ["restore", "--file", str(tmp_path / "nope.json"), "--target", "acme", "--confirm"],
        )
        assert code == 1

    def test_export_to_file(self, db: FakeDatabase, tmp_path: Path) -> None:
        seed_tenant(db, "acme")
        self._run(db, ["capture", "--tenant", "acme"])
        backup_id = db.rows(BACKUPS_TABLE)[0]["id"]
        out = tmp_path / "out.json"

        assert self._run(db, ["export", backup_id, "--output", str(out)]) == 0
        assert list(json.loads(out.read_text())["data"]) == ["acme"]

    def test_settings_and_recipients(self, db: FakeDatabase) -> None:
        assert self._run(db, ["settings", "set", "--enable", "--hour", "4"]) == 0
        assert db.rows("global_backup_settings")[0]["auto_backup_enabled"] is True

        assert self._run(db, ["recipients", "add", "Ops@Example.com", "--name", "Ops"]) == 0
        assert db.rows("backup_email_recipients")[0]["email"] == "ops@example.com"
        assert self._run(db, ["recipients", "list"]) == 0

    def test_unknown_backup(self, db: FakeDatabase) -> None:
        assert self._run(db, ["show", "missing"]) == 1

    def test_missing_config(self, tmp_path: Path) -> None:
        assert main(["--config", str(tmp_path / "nope.toml"), "list"]) == 1
