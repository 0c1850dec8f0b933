"""CLI for tenant backup and restore.

Usage:
    DB_PROFILE=local tenant-backup capture --tenant acme
    tenant-backup capture --system
    tenant-backup list --tenant acme
    tenant-backup restore --backup-id <id> --target acme --confirm
    tenant-backup restore --file acme.json --target acme-clone --confirm
    tenant-backup restore-system --backup-id <id> --confirm
    tenant-backup export <id> --output acme.json
    tenant-backup validate acme.json
    tenant-backup settings set --enable --hour 3 --frequency 24
    tenant-backup recipients add ops@example.com --name Ops
    tenant-backup send-email --pending
    tenant-backup run-scheduled
    tenant-backup check-manifest

Commands act as a platform operator (super admin) unless
``--as-tenant``/``--as-role`` are given, in which case the normal
tenant authorization rules apply.

Exit codes: 0 on success, 1 on failure or when a restore needs review.
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tenant_backup.auth import SUPER_ADMIN, Actor
from tenant_backup.backup.document import load_document, validate_document
from tenant_backup.backup.manifest import DEFAULT_MANIFEST
from tenant_backup.backup.models import BackupScope, SystemRestoreReport
from tenant_backup.config.loader import load_config
from tenant_backup.delivery import DeliveryResult, SmtpDeliveryDispatcher
from tenant_backup.errors import BackupError, CaptureFailedError
from tenant_backup.factory import (
    ProfileNotFoundError,
    get_active_profile_name,
    get_adapter,
    get_profile,
    resolve_url,
)
from tenant_backup.scheduler import run_scheduled_backup
from tenant_backup.schema.introspector import SchemaIntrospector
from tenant_backup.service import BackupService, CaptureRequest, RestoreRequest

console = Console()

ServiceCommand = Callable[[BackupService, Actor, argparse.Namespace], Awaitable[int]]


# ============================================================================
# Helpers
# ============================================================================


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _build_actor(args: argparse.Namespace) -> Actor:
    """Operator identity for this invocation."""
    if args.as_tenant:
        return Actor(user_id=args.as_user, tenant_id=args.as_tenant, role=args.as_role)
    return Actor(user_id=args.as_user, platform_role=SUPER_ADMIN)


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config) if args.config else None


async def _with_service(args: argparse.Namespace, command: ServiceCommand) -> int:
    """Build adapter and service, run ``command``, and map errors to exit codes."""
    try:
        config = load_config(_config_path(args), env_prefix=args.env_prefix)
        adapter = get_adapter(args.profile, env_prefix=args.env_prefix, config=config)
    except (FileNotFoundError, ProfileNotFoundError, ValueError, ImportError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    service = BackupService(
        adapter,
        options=config.backup,
        dispatcher=SmtpDeliveryDispatcher(config.delivery),
    )
    try:
        return await command(service, _build_actor(args), args)
    except CaptureFailedError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        for table, message in sorted(e.table_errors.items()):
            console.print(f"  [red]{table}[/red]: {message}")
        return 1
    except BackupError as e:
        console.print(f"[bold red]x[/bold red] {e} [dim]({e.status_code})[/dim]")
        return 1
    except OSError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await adapter.close()


def _read_document_arg(args: argparse.Namespace) -> str | None:
    if getattr(args, "file", None):
        return Path(args.file).read_text(encoding="utf-8")
    return None


def _print_table_results(title: str, results: list[dict]) -> None:
    """Render per-table outcomes (``TableResult.as_response()`` dicts)."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Table", style="dim")
    table.add_column("Deleted", justify="right")
    table.add_column("Inserted", justify="right", style="green")
    table.add_column("Status")

    for result in results:
        error = result.get("error")
        if result.get("skipped"):
            status = "[dim]skipped (not in backup)[/dim]"
        elif result.get("emptied"):
            status = f"[bold red]EMPTIED[/bold red] {error}"
        elif result.get("rolled_back"):
            status = f"[yellow]rolled back[/yellow] {error or ''}"
        elif error:
            status = f"[red]{error}[/red]"
        else:
            status = "[green]ok[/green]"
        table.add_row(result["table"], str(result["deleted"]), str(result["inserted"]), status)

    console.print(table)


def _print_delivery(result: DeliveryResult) -> None:
    if result.status == "sent":
        console.print(
            f"[bold green]v[/bold green] {result.backup_id} sent to "
            f"{', '.join(result.recipients)}"
        )
    else:
        console.print(f"[bold red]x[/bold red] {result.backup_id}: {result.error}")


# ============================================================================
# Async command implementations
# ============================================================================


async def _capture(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    scope = BackupScope.SYSTEM if args.system else BackupScope.TENANT
    response = await service.capture(
        CaptureRequest(scope=scope, tenant_id=args.tenant, notes=args.notes), actor
    )

    table = Table(title=f"Backup {response.backup_id}", show_header=True, header_style="bold")
    table.add_column("Tenant", style="dim")
    table.add_column("Records", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Status")
    for summary in response.per_tenant:
        style = "green" if summary.status == "completed" else "red"
        table.add_row(
            summary.tenant_id,
            str(summary.total_records),
            f"{summary.size_bytes:,} B",
            f"[{style}]{summary.status}[/{style}]",
        )
    console.print(table)
    console.print(
        f"[bold green]v[/bold green] {response.status.value}: "
        f"{response.total_records} records, {response.size_bytes:,} bytes"
    )
    return 0


async def _restore(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    tables = [t.strip() for t in args.tables.split(",")] if args.tables else None
    request = RestoreRequest(
        target_tenant_id=args.target,
        backup_id=args.backup_id,
        document=_read_document_arg(args),
        source_tenant_id=args.source,
        tables=tables,
        atomic=True if args.atomic else None,
        id_strategy=args.id_strategy,
    )
    response = await service.restore(request, actor)

    _print_table_results(
        f"Restore {response.source_tenant_id} -> {response.tenant_id}", response.per_table
    )
    if response.tenant_created:
        console.print(f"[dim]Created tenant {response.tenant_id}[/dim]")
    if response.emptied_tables:
        console.print(
            f"[bold red]Tables emptied without restored rows:[/bold red] "
            f"{', '.join(response.emptied_tables)}"
        )
    if response.needs_review:
        console.print("[bold yellow]Restore finished with errors; review required.[/bold yellow]")
        return 1
    console.print("[bold green]v[/bold green] Restore complete.")
    return 0


def _print_system_report(report: SystemRestoreReport) -> None:
    table = Table(title="System Restore", show_header=True, header_style="bold")
    table.add_column("Tenant", style="dim")
    table.add_column("Created")
    table.add_column("Inserted", justify="right", style="green")
    table.add_column("Errors", justify="right")
    for tenant in report.tenants:
        table.add_row(
            tenant.tenant_id,
            "yes" if tenant.tenant_created else "-",
            str(tenant.total_inserted),
            str(len(tenant.errors)) if tenant.errors else "-",
        )
    console.print(table)
    if report.global_tables:
        _print_table_results("Global tables", [t.as_response() for t in report.global_tables])
    for error in report.errors:
        console.print(f"[red]{error}[/red]")
    console.print(
        f"{report.tenants_created} tenants created, {report.tenants_updated} updated, "
        f"{report.total_records_restored} records restored"
    )


async def _restore_system(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    report = await service.restore_system(
        actor, backup_id=args.backup_id, document=_read_document_arg(args)
    )
    _print_system_report(report)
    return 1 if report.needs_review else 0


async def _list(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    scope = BackupScope(args.scope) if args.scope else None
    records = await service.list_backups(actor, tenant_id=args.tenant, scope=scope)

    table = Table(title="Backups", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Created")
    table.add_column("Scope")
    table.add_column("Tenant")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Size", justify="right")
    table.add_column("Emailed")
    for record in records:
        table.add_row(
            record.id,
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            record.scope.value,
            record.tenant_id or "-",
            record.backup_type.value,
            record.status.value,
            f"{record.size_bytes:,}",
            "yes" if record.email_sent else "-",
        )
    console.print(table)

    stats = await service.stats(actor, tenant_id=args.tenant)
    console.print(
        f"[dim]{stats.total_backups} backups, {stats.total_size_bytes:,} bytes, "
        f"{stats.emails_sent} emailed[/dim]"
    )
    return 0


async def _show(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    record = await service.get_backup(args.backup_id, actor)
    table = Table(title=f"Backup {record.id}", show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Scope", record.scope.value)
    table.add_row("Tenant", record.tenant_id or "-")
    table.add_row("Type", record.backup_type.value)
    table.add_row("Status", record.status.value)
    table.add_row("Created", record.created_at.isoformat())
    table.add_row("Created by", record.created_by or "-")
    table.add_row("Size", f"{record.size_bytes:,} bytes")
    table.add_row("Email sent", record.email_sent_at.isoformat() if record.email_sent_at else "no")
    if record.notes:
        table.add_row("Notes", record.notes)
    console.print(table)

    if record.document:
        counts = record.document.get("backup_info", {}).get("tableCounts", {})
        counts_table = Table(title="Table counts", show_header=True, header_style="bold")
        counts_table.add_column("Table", style="dim")
        counts_table.add_column("Rows", justify="right")
        for name, count in sorted(counts.items()):
            error = record.table_errors.get(name)
            counts_table.add_row(name, f"[red]{error}[/red]" if error else str(count))
        console.print(counts_table)
    return 0


async def _delete(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    if not args.confirm:
        console.print(
            f"[dim]To delete backup {args.backup_id}, add[/dim] [cyan]--confirm[/cyan] "
            "[dim]flag.[/dim]"
        )
        return 0
    await service.delete_backup(args.backup_id, actor)
    console.print(f"[bold green]v[/bold green] Deleted {args.backup_id}")
    return 0


async def _export(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    text = await service.export_document(args.backup_id, actor)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        console.print(f"[bold green]v[/bold green] Wrote {args.output}")
    else:
        sys.stdout.write(text + "\n")
    return 0


async def _settings(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    if args.settings_command == "set":
        changes = {
            key: value
            for key, value in {
                "auto_backup_enabled": args.enabled,
                "hour": args.hour,
                "minute": args.minute,
                "frequency_hours": args.frequency,
                "auto_email_enabled": args.email,
            }.items()
            if value is not None
        }
        settings = await service.update_settings(actor, **changes)
    else:
        settings = await service.get_settings(actor)

    table = Table(title="Automatic Backups", show_header=False)
    table.add_column("Setting", style="dim")
    table.add_column("Value")
    table.add_row("Enabled", "yes" if settings.auto_backup_enabled else "no")
    table.add_row("Time (UTC)", f"{settings.hour:02d}:{settings.minute:02d}")
    table.add_row("Every", f"{settings.frequency_hours} h")
    table.add_row("Email", "yes" if settings.auto_email_enabled else "no")
    table.add_row("Last run", settings.last_run_at.isoformat() if settings.last_run_at else "-")
    table.add_row("Next run", settings.next_run_at.isoformat() if settings.next_run_at else "-")
    console.print(table)
    return 0


async def _recipients(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    action = args.recipients_command
    if action == "add":
        recipient = await service.add_recipient(actor, args.email, args.name)
        console.print(f"[bold green]v[/bold green] Added {recipient.email} ({recipient.id})")
        return 0
    if action in ("enable", "disable"):
        recipient = await service.set_recipient_active(
            actor, args.recipient_id, action == "enable"
        )
        console.print(f"[bold green]v[/bold green] {recipient.email}: {action}d")
        return 0
    if action == "remove":
        await service.remove_recipient(actor, args.recipient_id)
        console.print(f"[bold green]v[/bold green] Removed {args.recipient_id}")
        return 0

    table = Table(title="Email Recipients", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Email")
    table.add_column("Name")
    table.add_column("Active")
    for recipient in await service.list_recipients(actor):
        table.add_row(
            recipient.id, recipient.email, recipient.name or "-",
            "yes" if recipient.active else "no",
        )
    console.print(table)
    return 0


async def _send_email(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    if args.pending:
        results = await service.send_pending_emails(actor)
        if not results:
            console.print("[dim]No pending backups.[/dim]")
    elif args.backup_id:
        results = [await service.send_backup_email(args.backup_id, actor)]
    else:
        console.print("[red]Error: give a backup id or --pending[/red]")
        return 1

    for result in results:
        _print_delivery(result)
    return 0 if all(r.status == "sent" for r in results) else 1


async def _run_scheduled(service: BackupService, actor: Actor, args: argparse.Namespace) -> int:
    result = await run_scheduled_backup(service)
    if not result.ran:
        console.print(f"[dim]Not due. Next run: {result.next_run_at or '-'}[/dim]")
        return 0
    if result.error:
        console.print(f"[bold red]x[/bold red] {result.error}")
    else:
        console.print(f"[bold green]v[/bold green] Backup {result.backup_id} {result.status.value}")
    if result.email is not None:
        _print_delivery(result.email)
    console.print(f"[dim]Next run: {result.next_run_at}[/dim]")
    return 1 if result.error else 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def _service_command(command: ServiceCommand) -> Callable[[argparse.Namespace], int]:
    def run(args: argparse.Namespace) -> int:
        return asyncio.run(_with_service(args, command))

    return run


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a backup file against the manifest (no database access)."""
    try:
        raw = Path(args.file).read_text(encoding="utf-8")
    except FileNotFoundError:
        console.print(f"[red]Error: file not found: {args.file}[/red]")
        return 1

    try:
        document = load_document(raw, DEFAULT_MANIFEST.tenant_field)
    except BackupError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    report = validate_document(document, DEFAULT_MANIFEST)
    info = document.info
    console.print(
        f"Version {info.version}, scope {info.scope.value}, "
        f"{info.tenant_count} tenants, {info.total_records} records"
    )
    for warning in report.warnings:
        console.print(f"  [yellow]warning[/yellow] {warning}")
    for error in report.errors:
        console.print(f"  [red]error[/red] {error}")

    if report.valid:
        console.print("[bold green]v[/bold green] Backup is valid.")
        return 0
    console.print("[bold red]x[/bold red] Backup is invalid.")
    return 1


def cmd_check_manifest(args: argparse.Namespace) -> int:
    """Compare the manifest's dependency ranks with the live FK graph."""
    try:
        config = load_config(_config_path(args), env_prefix=args.env_prefix)
        profile = get_profile(config, get_active_profile_name(args.profile, args.env_prefix))
    except (FileNotFoundError, ProfileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        with SchemaIntrospector(resolve_url(profile)) as introspector:
            graph = introspector.get_fk_graph()
    except Exception as e:
        console.print(f"[red]Error: failed to connect to database: {e}[/red]")
        return 1

    problems = DEFAULT_MANIFEST.verify_against(graph)
    if not problems:
        console.print(
            f"[bold green]v[/bold green] Manifest matches database "
            f"({len(DEFAULT_MANIFEST.entries)} tables)."
        )
        return 0

    console.print(f"[bold red]x[/bold red] {len(problems)} manifest problems:")
    for problem in problems:
        console.print(f"  - {problem}")
    return 1


def cmd_manifest(args: argparse.Namespace) -> int:
    """Print the manifest's tables in capture order."""
    if args.json:
        sys.stdout.write(json.dumps(DEFAULT_MANIFEST.model_dump(), indent=2) + "\n")
        return 0

    table = Table(title="Table Manifest", show_header=True, header_style="bold")
    table.add_column("Rank", justify="right")
    table.add_column("Table")
    table.add_column("Scope", style="dim")
    table.add_column("References", style="dim")
    for entry in DEFAULT_MANIFEST.global_order() + DEFAULT_MANIFEST.capture_order():
        table.add_row(
            str(entry.rank),
            entry.name,
            "tenant" if entry.tenant_scoped else "global",
            ", ".join(f"{r.field} -> {r.table}" for r in entry.references) or "-",
        )
    console.print(table)
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenant-backup",
        description="Tenant backup and restore for the HR database",
    )
    parser.add_argument("--config", help="Path to backup.toml (default: ./backup.toml)")
    parser.add_argument("--profile", help="Database profile (default: $DB_PROFILE)")
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument("--as-user", default="cli", help="User id recorded as created_by")
    parser.add_argument("--as-tenant", help="Act as a member of this tenant instead of super admin")
    parser.add_argument("--as-role", default="owner", help="Tenant role used with --as-tenant")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # capture
    p_capture = subparsers.add_parser("capture", help="Capture a tenant or system backup")
    target = p_capture.add_mutually_exclusive_group(required=True)
    target.add_argument("--tenant", help="Tenant id to back up")
    target.add_argument("--system", action="store_true", help="Back up every tenant")
    p_capture.add_argument("--notes", help="Free-form note stored on the record")
    p_capture.set_defaults(func=_service_command(_capture))

    # restore
    p_restore = subparsers.add_parser("restore", help="Restore one tenant")
    source = p_restore.add_mutually_exclusive_group(required=True)
    source.add_argument("--backup-id", help="Stored backup to restore from")
    source.add_argument("--file", help="Backup JSON file to restore from")
    p_restore.add_argument("--target", required=True, help="Tenant id to restore into")
    p_restore.add_argument("--source", help="Tenant section of the backup to read")
    p_restore.add_argument("--tables", help="Comma-separated subset of tables")
    p_restore.add_argument(
        "--id-strategy", choices=["preserve", "remap"],
        help="Keep primary keys or derive new ones (default depends on target)",
    )
    p_restore.add_argument(
        "--atomic", action="store_true", help="Roll back the whole tenant on any table error"
    )
    p_restore.add_argument(
        "--confirm", action="store_true",
        help="Actually perform the restore (replaces the target's rows)",
    )
    p_restore.set_defaults(func=_confirmed(_service_command(_restore)))

    # restore-system
    p_restore_system = subparsers.add_parser(
        "restore-system", help="Restore every tenant and the global tables"
    )
    source = p_restore_system.add_mutually_exclusive_group(required=True)
    source.add_argument("--backup-id", help="Stored system backup")
    source.add_argument("--file", help="System backup JSON file")
    p_restore_system.add_argument("--confirm", action="store_true", help="Actually restore")
    p_restore_system.set_defaults(func=_confirmed(_service_command(_restore_system)))

    # list
    p_list = subparsers.add_parser("list", help="List backups")
    p_list.add_argument("--tenant", help="Only this tenant's backups")
    p_list.add_argument("--scope", choices=[s.value for s in BackupScope])
    p_list.set_defaults(func=_service_command(_list))

    # show
    p_show = subparsers.add_parser("show", help="Show one backup record")
    p_show.add_argument("backup_id")
    p_show.set_defaults(func=_service_command(_show))

    # delete
    p_delete = subparsers.add_parser("delete", help="Delete a backup record")
    p_delete.add_argument("backup_id")
    p_delete.add_argument("--confirm", action="store_true", help="Actually delete")
    p_delete.set_defaults(func=_service_command(_delete))

    # export
    p_export = subparsers.add_parser("export", help="Write a backup's document as JSON")
    p_export.add_argument("backup_id")
    p_export.add_argument("--output", "-o", help="Output file (default: stdout)")
    p_export.set_defaults(func=_service_command(_export))

    # validate
    p_validate = subparsers.add_parser("validate", help="Validate a backup JSON file")
    p_validate.add_argument("file")
    p_validate.set_defaults(func=cmd_validate)

    # settings
    p_settings = subparsers.add_parser("settings", help="Automatic backup settings")
    settings_sub = p_settings.add_subparsers(dest="settings_command", required=True)
    settings_sub.add_parser("show", help="Show settings")
    p_set = settings_sub.add_parser("set", help="Change settings")
    enabled = p_set.add_mutually_exclusive_group()
    enabled.add_argument("--enable", dest="enabled", action="store_const", const=True)
    enabled.add_argument("--disable", dest="enabled", action="store_const", const=False)
    p_set.add_argument("--hour", type=int)
    p_set.add_argument("--minute", type=int)
    p_set.add_argument("--frequency", type=int, help="Hours between runs")
    email = p_set.add_mutually_exclusive_group()
    email.add_argument("--email", dest="email", action="store_const", const=True)
    email.add_argument("--no-email", dest="email", action="store_const", const=False)
    p_settings.set_defaults(func=_service_command(_settings))

    # recipients
    p_recipients = subparsers.add_parser("recipients", help="Backup email recipients")
    recipients_sub = p_recipients.add_subparsers(dest="recipients_command", required=True)
    recipients_sub.add_parser("list", help="List recipients")
    p_add = recipients_sub.add_parser("add", help="Add a recipient")
    p_add.add_argument("email")
    p_add.add_argument("--name")
    for action in ("enable", "disable", "remove"):
        p_action = recipients_sub.add_parser(action, help=f"{action.capitalize()} a recipient")
        p_action.add_argument("recipient_id")
    p_recipients.set_defaults(func=_service_command(_recipients))

    # send-email
    p_send = subparsers.add_parser("send-email", help="Email a backup to the recipients")
    p_send.add_argument("backup_id", nargs="?")
    p_send.add_argument("--pending", action="store_true", help="Send every unsent backup")
    p_send.set_defaults(func=_service_command(_send_email))

    # run-scheduled
    p_run = subparsers.add_parser(
        "run-scheduled", help="Run the automatic system backup if it is due"
    )
    p_run.set_defaults(func=_service_command(_run_scheduled))

    # check-manifest
    p_check = subparsers.add_parser(
        "check-manifest", help="Verify manifest ranks against the live database"
    )
    p_check.set_defaults(func=cmd_check_manifest)

    # manifest
    p_manifest = subparsers.add_parser("manifest", help="Print the table manifest")
    p_manifest.add_argument("--json", action="store_true")
    p_manifest.set_defaults(func=cmd_manifest)

    return parser


def _confirmed(run: Callable[[argparse.Namespace], int]) -> Callable[[argparse.Namespace], int]:
    """Require ``--confirm`` before a destructive command runs."""

    def guarded(args: argparse.Namespace) -> int:
        if not args.confirm:
            console.print(
                "[yellow]This replaces existing tenant rows.[/yellow] "
                "[dim]To actually restore, add[/dim] [cyan]--confirm[/cyan] [dim]flag.[/dim]"
            )
            return 0
        return run(args)

    return guarded


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
