"""Authorization gate for backup and restore operations.

Decisions are pure functions of the actor, the operation, and the target.
Nothing is cached: every call re-evaluates the actor's current roles.

Rules:
    - system scope: platform role ``super_admin`` only.
    - tenant scope: same tenant and tenant role ``owner`` or ``admin``.
      A super admin may act on any single tenant (the same capability
      used for "view as tenant").
    - no actor: unauthenticated (401); any other denial: forbidden (403).

Usage:
    from tenant_backup.auth import Actor, Operation, require

    actor = Actor(user_id="u1", tenant_id="acme", role="owner")
    require(actor, Operation.CAPTURE, BackupScope.TENANT, "acme")
"""

from enum import Enum

from pydantic import BaseModel

from tenant_backup.backup.models import BackupScope
from tenant_backup.errors import AuthError

SUPER_ADMIN = "super_admin"
TENANT_ADMIN_ROLES = frozenset({"owner", "admin"})


class Operation(str, Enum):
    CAPTURE = "capture"
    RESTORE = "restore"
    VIEW = "view"
    EXPORT = "export"
    DELETE = "delete"
    EMAIL = "email"
    SETTINGS = "settings"


# Operations that never have a tenant-scoped variant.
SYSTEM_ONLY_OPERATIONS = frozenset({Operation.SETTINGS})


class Actor(BaseModel):
    """Authenticated caller.

    Attributes:
        user_id: Caller's user id.
        tenant_id: Tenant the caller belongs to, if any.
        role: Caller's role inside ``tenant_id`` (owner, admin, manager, ...).
        platform_role: Platform-wide role (``super_admin`` for operators).
    """

    user_id: str
    tenant_id: str | None = None
    role: str | None = None
    platform_role: str | None = None

    @property
    def is_super_admin(self) -> bool:
        return self.platform_role == SUPER_ADMIN


# Actor used by the scheduler for automatic system backups.
SYSTEM_ACTOR = Actor(user_id="system:scheduler", platform_role=SUPER_ADMIN)


class Decision(BaseModel):
    allowed: bool
    reason: str
    authenticated: bool = True

    def __bool__(self) -> bool:
        return self.allowed


def can_act_for_tenant(actor: Actor, tenant_id: str) -> bool:
    """Whether ``actor`` holds administrative rights over ``tenant_id``."""
    if actor.is_super_admin:
        return True
    return actor.tenant_id == tenant_id and actor.role in TENANT_ADMIN_ROLES


def can_view_as_tenant(actor: Actor, tenant_id: str) -> bool:
    """Whether ``actor`` may switch into ``tenant_id``'s view."""
    return can_act_for_tenant(actor, tenant_id)


def authorize(
    actor: Actor | None,
    operation: Operation,
    scope: BackupScope,
    target_tenant_id: str | None = None,
) -> Decision:
    """Decide whether ``actor`` may run ``operation`` in ``scope``."""
    if actor is None:
        return Decision(allowed=False, reason="Not authenticated", authenticated=False)

    if scope is BackupScope.SYSTEM or operation in SYSTEM_ONLY_OPERATIONS:
        if actor.is_super_admin:
            return Decision(allowed=True, reason="super admin")
        return Decision(
            allowed=False,
            reason=f"{operation.value} on system scope requires super admin",
        )

    if not target_tenant_id:
        return Decision(allowed=False, reason="Target tenant is required")

    if can_act_for_tenant(actor, target_tenant_id):
        reason = "super admin" if actor.is_super_admin else f"tenant {actor.role}"
        return Decision(allowed=True, reason=reason)

    if actor.tenant_id != target_tenant_id:
        return Decision(allowed=False, reason=f"Not a member of tenant '{target_tenant_id}'")
    return Decision(
        allowed=False,
        reason=f"Role '{actor.role}' may not {operation.value} tenant backups",
    )


def require(
    actor: Actor | None,
    operation: Operation,
    scope: BackupScope,
    target_tenant_id: str | None = None,
) -> Actor:
    """Return the actor if allowed.

    Raises:
        AuthError: 401 if unauthenticated, 403 if not allowed.
    """
    decision = authorize(actor, operation, scope, target_tenant_id)
    if not decision.allowed:
        raise AuthError(decision.reason, authenticated=decision.authenticated)
    return actor
