"""Async Supabase database adapter.

Provides ``AsyncSupabaseAdapter``, an async implementation of the
``DatabaseClient`` protocol using the supabase-py async client.

The client is initialized lazily on first use with an ``asyncio.Lock``
to ensure thread-safe initialization.

Usage:
    from tenant_backup.adapters.supabase import AsyncSupabaseAdapter

    adapter = AsyncSupabaseAdapter(
        url="https://xyzproject.supabase.co",
        key="eyJ...",
    )

    rows = await adapter.select("employees", "*", filters={"tenant_id": "acme"})
    await adapter.close()
"""

import asyncio
from typing import Any

from supabase import AsyncClient, acreate_client

# Keys per ownership lookup; PostgREST filters travel in the query string
OWNER_CHECK_BATCH = 100


class AsyncSupabaseAdapter:
    """Async Supabase implementation of the ``DatabaseClient`` protocol.

    Wraps the Supabase Python async client to match the ``DatabaseClient``
    interface.  PostgREST has no client-side transactions, so
    ``supports_transactions`` is ``False`` and restores against this
    adapter are always best-effort.

    Args:
        url: Supabase project URL.
        key: Supabase API key (service role key for backup work).
    """

    supports_transactions = False

    def __init__(self, url: str, key: str) -> None:
        self._url: str = url
        self._key: str = key
        self._client: AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        """Get or create the async Supabase client."""
        if self._client is None:
            async with self._lock:
                # Double-check after acquiring lock
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    # ------------------------------------------------------------------
    # CRUD Methods
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table using Supabase query builder."""
        client = await self._get_client()
        query = client.table(table).select(columns)

        if filters:
            for key, value in filters.items():
                query = query.is_(key, "null") if value is None else query.eq(key, value)

        if order_by:
            query = query.order(order_by)

        result = await query.execute()
        return result.data

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row and return created row."""
        client = await self._get_client()
        result = await client.table(table).insert(data).execute()
        return result.data[0]

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows and return first updated row."""
        client = await self._get_client()
        query = client.table(table).update(data)

        for key, value in filters.items():
            query = query.eq(key, value)

        result = await query.execute()
        if not result.data:
            raise ValueError(f"No rows matched filters: {filters}")
        return result.data[0]

    async def upsert(
        self,
        table: str,
        rows: list[dict],
        on_conflict: str = "id",
        owner_field: str | None = None,
    ) -> int:
        """Upsert rows through PostgREST.

        The ownership guard is a pre-check: keys already owned by a
        different owner are dropped from the batch before the upsert.
        """
        if not rows:
            return 0

        client = await self._get_client()
        if owner_field:
            keys = [row[on_conflict] for row in rows if on_conflict in row]
            owners: dict[Any, Any] = {}
            for start in range(0, len(keys), OWNER_CHECK_BATCH):
                existing = await (
                    client.table(table)
                    .select(f"{on_conflict}, {owner_field}")
                    .in_(on_conflict, keys[start:start + OWNER_CHECK_BATCH])
                    .execute()
                )
                owners.update((r[on_conflict], r[owner_field]) for r in existing.data)
            rows = [
                row for row in rows
                if row.get(on_conflict) not in owners
                or owners[row[on_conflict]] == row.get(owner_field)
            ]
            if not rows:
                return 0

        result = await client.table(table).upsert(rows, on_conflict=on_conflict).execute()
        return len(result.data)

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        """Delete rows matching filters and return how many were removed."""
        client = await self._get_client()
        query = client.table(table).delete()

        for key, value in filters.items():
            query = query.eq(key, value)

        result = await query.execute()
        return len(result.data or [])

    def transaction(self):
        """Not supported by PostgREST.

        Raises:
            NotImplementedError: Always.  Use ``AsyncPostgresAdapter`` for
                atomic restores.
        """
        raise NotImplementedError(
            "Transactions not supported for this adapter type"
        )

    async def close(self) -> None:
        """Close the Supabase async client (no-op if never initialized)."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
