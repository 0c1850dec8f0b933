"""Error taxonomy for backup and restore operations.

Every error carries an HTTP-style ``status_code`` so that an endpoint layer
(or the CLI) can map it to a response without inspecting the type.

``TableOperationError`` is special: it never escapes the per-table boundary.
Capture and restore catch it (and any adapter exception) and attach the
message to that table's outcome instead.

Usage:
    from tenant_backup.errors import AuthError, FatalError, NotFoundError

    try:
        await service.restore(request, actor)
    except AuthError as e:
        return {"error": str(e)}, e.status_code
"""


class BackupError(Exception):
    """Base class for all backup/restore errors."""

    status_code: int = 500


class AuthError(BackupError):
    """Caller is unauthenticated (401) or not allowed (403).

    Raised by the authorization gate before any table is read or written.
    """

    def __init__(self, reason: str, *, authenticated: bool = True) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = 403 if authenticated else 401


class NotFoundError(BackupError):
    """Referenced tenant or backup record does not exist."""

    status_code = 404


class FatalError(BackupError):
    """Operation cannot start: malformed document, unknown version, bad ids.

    Raised before any table is touched, so aborting is always clean.
    """

    status_code = 400


class ManifestError(FatalError):
    """Table manifest is inconsistent (cycle or rank violation)."""


class TableOperationError(BackupError):
    """A single table's read (capture) or write (restore) failed."""

    def __init__(self, table: str, phase: str, message: str) -> None:
        super().__init__(f"{phase} {table}: {message}")
        self.table = table
        self.phase = phase
        self.message = message


class CaptureFailedError(BackupError):
    """Capture finished but one or more tables could not be read."""

    status_code = 500

    def __init__(self, backup_id: str, table_errors: dict[str, str]) -> None:
        tables = ", ".join(sorted(table_errors))
        super().__init__(f"Backup {backup_id} is incomplete: failed tables: {tables}")
        self.backup_id = backup_id
        self.table_errors = table_errors


class TenantBusyError(BackupError):
    """Another capture or restore currently holds the tenant's lock."""

    status_code = 409

    def __init__(self, tenant_id: str, holder: str) -> None:
        super().__init__(f"Tenant '{tenant_id}' is busy ({holder} in progress)")
        self.tenant_id = tenant_id
        self.holder = holder
