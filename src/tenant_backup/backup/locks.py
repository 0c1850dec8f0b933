"""Per-tenant advisory locks for capture and restore.

A capture must never read a half-restored table, and two restores of the
same tenant must never interleave.  ``TenantLocks`` hands out one
``asyncio.Lock`` per tenant id and refuses (instead of waiting) when the
lock is already held, so the caller gets an immediate ``TenantBusyError``.

Locks are process-local.  Operations on different tenants never contend.

Usage:
    locks = TenantLocks()
    async with locks.hold("acme", "restore"):
        await restore_tenant(...)
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import AsyncExitStack, asynccontextmanager

from tenant_backup.errors import TenantBusyError


class TenantLocks:
    """Registry of non-blocking per-tenant locks."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, str] = {}

    def holder(self, tenant_id: str) -> str | None:
        """Name of the operation holding the tenant's lock, if any."""
        return self._holders.get(tenant_id)

    @asynccontextmanager
    async def hold(self, tenant_id: str, operation: str) -> AsyncIterator[None]:
        """Hold the tenant's lock for the duration of the block.

        Raises:
            TenantBusyError: If another operation holds the lock.
        """
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        if lock.locked():
            raise TenantBusyError(tenant_id, self._holders.get(tenant_id, "operation"))

        await lock.acquire()
        self._holders[tenant_id] = operation
        try:
            yield
        finally:
            self._holders.pop(tenant_id, None)
            lock.release()

    @asynccontextmanager
    async def hold_many(self, tenant_ids: Iterable[str], operation: str) -> AsyncIterator[None]:
        """Hold several tenant locks at once (all or nothing).

        Ids are acquired in sorted order; if any is busy, the ones already
        taken are released before ``TenantBusyError`` propagates.
        """
        async with AsyncExitStack() as stack:
            for tenant_id in sorted(set(tenant_ids)):
                await stack.enter_async_context(self.hold(tenant_id, operation))
            yield
