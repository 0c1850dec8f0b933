"""Shared fixtures: an in-memory ``DatabaseClient`` and HR seed data."""

import copy
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import pytest

from tenant_backup.auth import SUPER_ADMIN, Actor
from tenant_backup.backup.locks import TenantLocks
from tenant_backup.config.models import BackupOptions
from tenant_backup.registry import BackupRegistry
from tenant_backup.service import BackupService


class FakeDatabase:
    """Dict-backed ``DatabaseClient`` with the same contract as the adapters.

    ``fail`` maps ``(operation, table)`` to an exception raised by that call,
    e.g. ``{("select", "salary_records"): RuntimeError("boom")}``.
    Every call is recorded in ``calls`` as ``(operation, table)``.  Writes are
    also recorded in ``writes`` as ``(operation, table, tenant)``, where the
    tenant is the ``tenant_id`` (``id`` for ``tenants``) of the filter or row.
    """

    supports_transactions = True

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.fail: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.writes: list[tuple[str, str, Any]] = []
        self.closed = False

    def _call(self, operation: str, table: str) -> list[dict[str, Any]]:
        self.calls.append((operation, table))
        error = self.fail.get((operation, table))
        if error is not None:
            raise error
        return self.tables.setdefault(table, [])

    def _write(self, operation: str, table: str, values: dict[str, Any]) -> None:
        key = "id" if table == "tenants" else "tenant_id"
        self.writes.append((operation, table, values.get(key)))

    @staticmethod
    def _matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    def rows(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        """Test helper: current rows of a table matching ``filters``."""
        return [r for r in self.tables.get(table, []) if self._matches(r, filters)]

    def touched_tables(self) -> set[str]:
        return {table for _op, table in self.calls}

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        rows = [r for r in self._call("select", table) if self._matches(r, filters)]
        if order_by:
            rows = sorted(rows, key=lambda r: str(r.get(order_by)))
        if columns.strip() != "*":
            names = [c.strip() for c in columns.split(",")]
            return [{n: r.get(n) for n in names} for r in rows]
        return [copy.deepcopy(r) for r in rows]

    async def insert(self, table: str, data: dict) -> dict:
        rows = self._call("insert", table)
        self._write("insert", table, data)
        if "id" in data and any(r.get("id") == data["id"] for r in rows):
            raise ValueError(f"duplicate key {data['id']} in {table}")
        rows.append(copy.deepcopy(data))
        return copy.deepcopy(data)

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        matched = [r for r in self._call("update", table) if self._matches(r, filters)]
        self._write("update", table, filters)
        if not matched:
            raise ValueError(f"No rows matched filters: {filters}")
        for row in matched:
            row.update(copy.deepcopy(data))
        return copy.deepcopy(matched[0])

    async def upsert(
        self,
        table: str,
        rows: list[dict],
        on_conflict: str = "id",
        owner_field: str | None = None,
    ) -> int:
        existing = self._call("upsert", table)
        by_key = {r.get(on_conflict): r for r in existing}
        written = 0
        for row in rows:
            self._write("upsert", table, row)
            current = by_key.get(row.get(on_conflict))
            if current is None:
                new = copy.deepcopy(row)
                existing.append(new)
                by_key[row.get(on_conflict)] = new
                written += 1
            elif owner_field is None or current.get(owner_field) == row.get(owner_field):
                current.update(copy.deepcopy(row))
                written += 1
        return written

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        rows = self._call("delete", table)
        self._write("delete", table, filters)
        kept = [r for r in rows if not self._matches(r, filters)]
        deleted = len(rows) - len(kept)
        self.tables[table] = kept
        return deleted

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["FakeDatabase"]:
        snapshot = copy.deepcopy(self.tables)
        try:
            yield self
        except BaseException:
            self.tables = snapshot
            raise

    async def close(self) -> None:
        self.closed = True


def new_id() -> str:
    return str(uuid.uuid4())


def seed_tenant(
    db: FakeDatabase,
    tenant_id: str,
    name: str | None = None,
    employees: int = 3,
    attendance_per_employee: int = 2,
) -> dict[str, list[str]]:
    """Insert a tenant with one position, employees, and attendance/break rows.

    Returns:
        Ids created per table.
    """
    db.tables.setdefault("tenants", []).append(
        {"id": tenant_id, "name": name or tenant_id.title(), "timezone": "UTC"}
    )
    position_id = new_id()
    db.tables.setdefault("positions", []).append(
        {"id": position_id, "tenant_id": tenant_id, "title": "Staff"}
    )
    ids: dict[str, list[str]] = {
        "positions": [position_id], "employees": [], "attendance_logs": [], "break_logs": []
    }
    for e in range(employees):
        employee_id = new_id()
        ids["employees"].append(employee_id)
        db.tables.setdefault("employees", []).append({
            "id": employee_id,
            "tenant_id": tenant_id,
            "position_id": position_id,
            "full_name": f"Employee {e}",
        })
        for a in range(attendance_per_employee):
            attendance_id = new_id()
            ids["attendance_logs"].append(attendance_id)
            db.tables.setdefault("attendance_logs", []).append({
                "id": attendance_id,
                "tenant_id": tenant_id,
                "employee_id": employee_id,
                "date": f"2024-01-{a + 1:02d}",
            })
        if attendance_per_employee:
            break_id = new_id()
            ids["break_logs"].append(break_id)
            db.tables.setdefault("break_logs", []).append({
                "id": break_id,
                "tenant_id": tenant_id,
                "employee_id": employee_id,
                "attendance_id": ids["attendance_logs"][-1],
                "minutes": 15,
            })
    return ids


@pytest.fixture
def db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def super_admin() -> Actor:
    return Actor(user_id="ops", platform_role=SUPER_ADMIN)


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def registry(db: FakeDatabase, fixed_now: datetime) -> BackupRegistry:
    return BackupRegistry(db, clock=lambda: fixed_now)


@pytest.fixture
def service(db: FakeDatabase, registry: BackupRegistry) -> BackupService:
    return BackupService(db, registry=registry, options=BackupOptions(), locks=TenantLocks())
