"""Tests for the table manifest: ordering, rank checks, and FK verification."""

import pytest

from tenant_backup.backup.manifest import (
    DEFAULT_MANIFEST,
    ForeignKey,
    ManifestEntry,
    TableManifest,
)
from tenant_backup.errors import FatalError, ManifestError


def _small_manifest() -> TableManifest:
    return TableManifest(entries=[
        ManifestEntry(name="plans", rank=0, tenant_scoped=False),
        ManifestEntry(name="positions", rank=1),
        ManifestEntry(name="notes", rank=1),
        ManifestEntry(
            name="employees", rank=2,
            references=[ForeignKey(table="positions", field="position_id")],
        ),
        ManifestEntry(
            name="shifts", rank=3,
            references=[ForeignKey(table="employees", field="employee_id")],
        ),
    ])


class TestOrdering:
    """Capture/insert ascend by rank, delete descends."""

    def test_capture_order_ascends(self) -> None:
        names = [e.name for e in _small_manifest().capture_order()]
        assert names == ["positions", "notes", "employees", "shifts"]

    def test_delete_order_is_reverse_of_insert(self) -> None:
        manifest = _small_manifest()
        assert manifest.delete_order() == list(reversed(manifest.insert_order()))

    def test_global_tables_not_in_tenant_order(self) -> None:
        manifest = _small_manifest()
        assert "plans" not in manifest.table_names
        assert [e.name for e in manifest.global_order()] == ["plans"]

    def test_subset_keeps_rank_order(self) -> None:
        names = [e.name for e in _small_manifest().insert_order(["shifts", "positions"])]
        assert names == ["positions", "shifts"]

    def test_rank_groups(self) -> None:
        manifest = _small_manifest()
        groups = manifest.rank_groups(manifest.capture_order())
        assert [[e.name for e in g] for g in groups] == [
            ["positions", "notes"], ["employees"], ["shifts"],
        ]

    def test_unknown_table_rejected(self) -> None:
        with pytest.raises(FatalError, match="not in the manifest"):
            _small_manifest().select(["payroll"])

    def test_global_table_rejected_in_tenant_subset(self) -> None:
        with pytest.raises(FatalError, match="global"):
            _small_manifest().select(["plans"])


class TestRankChecks:
    """The manifest refuses inconsistent dependency ranks."""

    def test_parent_with_equal_rank_rejected(self) -> None:
        with pytest.raises(ManifestError, match="lower rank"):
            TableManifest(entries=[
                ManifestEntry(name="a", rank=1),
                ManifestEntry(name="b", rank=1, references=[ForeignKey(table="a", field="a_id")]),
            ])

    def test_unknown_reference_rejected(self) -> None:
        with pytest.raises(ManifestError, match="unknown table"):
            TableManifest(entries=[
                ManifestEntry(name="b", rank=1, references=[ForeignKey(table="x", field="x_id")]),
            ])

    def test_duplicate_rejected(self) -> None:
        with pytest.raises(ManifestError, match="Duplicate"):
            TableManifest(entries=[
                ManifestEntry(name="a", rank=1),
                ManifestEntry(name="a", rank=2),
            ])

    def test_tenant_table_cannot_be_entry(self) -> None:
        with pytest.raises(ManifestError, match="handled separately"):
            TableManifest(entries=[ManifestEntry(name="tenants", rank=1)])

    def test_self_reference_allowed(self) -> None:
        manifest = TableManifest(entries=[
            ManifestEntry(
                name="positions", rank=1,
                references=[ForeignKey(table="positions", field="parent_id")],
            ),
        ])
        assert manifest.table_names == ["positions"]

    def test_global_cannot_reference_tenant_table(self) -> None:
        with pytest.raises(ManifestError, match="Global table"):
            TableManifest(entries=[
                ManifestEntry(name="positions", rank=1),
                ManifestEntry(
                    name="catalog", rank=2, tenant_scoped=False,
                    references=[ForeignKey(table="positions", field="position_id")],
                ),
            ])


class TestDefaultManifest:
    """The built-in HR manifest is internally consistent."""

    def test_every_reference_points_to_lower_rank(self) -> None:
        by_name = {e.name: e for e in DEFAULT_MANIFEST.entries}
        for entry in DEFAULT_MANIFEST.entries:
            for ref in entry.references:
                if ref.table != entry.name:
                    assert by_name[ref.table].rank < entry.rank, (entry.name, ref.table)

    def test_covers_hr_tables(self) -> None:
        names = set(DEFAULT_MANIFEST.table_names)
        assert {"employees", "attendance_logs", "break_logs", "positions", "subscriptions"} <= names
        assert len(names) == 17

    def test_employees_before_attendance_before_breaks(self) -> None:
        order = DEFAULT_MANIFEST.table_names
        assert order.index("positions") < order.index("employees")
        assert order.index("employees") < order.index("attendance_logs")
        assert order.index("attendance_logs") < order.index("break_logs")


class TestDependencies:
    """Deriving and verifying ranks from a foreign-key graph."""

    def test_from_dependencies_layers_by_longest_path(self) -> None:
        manifest = TableManifest.from_dependencies(
            {
                "tenants": set(),
                "plans": set(),
                "positions": {"tenants"},
                "employees": {"tenants", "positions"},
                "attendance": {"employees"},
                "breaks": {"attendance", "employees"},
            },
            global_tables=["plans"],
        )
        ranks = {e.name: e.rank for e in manifest.entries}
        assert ranks == {
            "plans": 0, "positions": 1, "employees": 2, "attendance": 3, "breaks": 4,
        }
        assert not manifest.get("plans").tenant_scoped

    def test_from_dependencies_detects_cycle(self) -> None:
        with pytest.raises(ManifestError, match="cycle"):
            TableManifest.from_dependencies({"a": {"b"}, "b": {"a"}})

    def test_verify_against_matching_graph(self) -> None:
        graph = {
            "plans": set(),
            "positions": {"tenants"},
            "notes": set(),
            "employees": {"positions", "tenants"},
            "shifts": {"employees"},
        }
        assert _small_manifest().verify_against(graph) == []

    def test_verify_against_reports_problems(self) -> None:
        graph = {
            "plans": set(),
            "positions": {"shifts"},
            "notes": {"employees"},
            "employees": {"positions"},
        }
        problems = _small_manifest().verify_against(graph)
        assert any("shifts: table not found" in p for p in problems)
        assert any("positions (rank 1) references shifts" in p for p in problems)
        assert any("notes references employees but the manifest" in p for p in problems)
