"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that all adapters must implement.
All methods are ``async def`` -- the library is async-first.

Usage:
    from tenant_backup.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select("employees", "*", filters={"tenant_id": "t1"})
        await client.upsert("employees", rows, on_conflict="id")
        deleted = await client.delete("employees", {"tenant_id": "t1"})
        await client.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    This Protocol ensures type safety and consistent behavior across
    different database backends (PostgreSQL, Supabase, etc.).

    All data methods are async -- callers must ``await`` every operation.
    ``transaction()`` returns an async context manager; adapters that
    cannot offer one set ``supports_transactions = False`` and raise
    ``NotImplementedError``.
    """

    supports_transactions: bool

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, name, status"``).
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional column name to sort by.

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            rows = await client.select(
                "attendance_logs",
                "*",
                filters={"tenant_id": "acme"},
                order_by="check_in",
            )
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row into table and return the created row.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows in table and return the first updated row.

        Raises:
            Exception: If no rows match filters.
        """
        ...

    async def upsert(
        self,
        table: str,
        rows: list[dict],
        on_conflict: str = "id",
        owner_field: str | None = None,
    ) -> int:
        """Insert rows, overwriting existing rows with the same key.

        Args:
            table: Table name.
            rows: Row dicts to write.
            on_conflict: Primary key (or unique) column used to detect
                existing rows.
            owner_field: When set, an existing row is only overwritten if
                its ``owner_field`` equals the incoming row's value.  Rows
                owned by someone else are left untouched and not counted.

        Returns:
            Number of rows actually inserted or overwritten.

        Example:
            written = await client.upsert(
                "employees",
                [{"id": "e1", "tenant_id": "acme", "name": "Ana"}],
                on_conflict="id",
                owner_field="tenant_id",
            )
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        """Delete rows from table.

        Args:
            table: Table name.
            filters: Dict of field=value filters (all must match via AND).

        Returns:
            Number of rows deleted.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager["DatabaseClient"]:
        """Open a transaction and yield a client bound to it.

        Everything done through the yielded client commits together when
        the block exits normally and rolls back if it raises.

        Example:
            async with client.transaction() as tx:
                await tx.delete("employees", {"tenant_id": "acme"})
                await tx.upsert("employees", rows)
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
