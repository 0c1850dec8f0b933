"""Declarative table manifest with foreign-key dependency ranks.

The manifest is the single source of truth for table ordering.  Capture
and insert walk it in ascending rank (parents before children); delete
walks it in descending rank (children before parents).

Ranks must form a strict topological layering: a table only references
tables of a *lower* rank (self-references excepted), so every table in
one rank group can be processed concurrently.

Usage:
    from tenant_backup.backup.manifest import ForeignKey, ManifestEntry, TableManifest

    manifest = TableManifest(entries=[
        ManifestEntry(name="positions", rank=1),
        ManifestEntry(name="employees", rank=2,
                      references=[ForeignKey(table="positions", field="position_id")]),
    ])
    [e.name for e in manifest.delete_order()]
    # ['employees', 'positions']
"""

from collections.abc import Iterable

from pydantic import BaseModel, Field, model_validator

from tenant_backup.errors import FatalError, ManifestError

# Reserved key under which a tenant's own configuration row is stored.
TENANT_SETTINGS_KEY = "tenant_settings"


class ForeignKey(BaseModel):
    """Foreign key reference to a parent table."""

    table: str          # parent table name
    field: str          # FK column in this table


class ManifestEntry(BaseModel):
    """One table covered by backup and restore."""

    name: str
    rank: int = Field(ge=0)
    tenant_scoped: bool = True
    pk: str = "id"
    references: list[ForeignKey] = Field(default_factory=list)


class TableManifest(BaseModel):
    """Ordered registry of tenant-scoped and global tables.

    Attributes:
        tenant_table: Table holding one configuration row per tenant.
        tenant_key: Primary key column of ``tenant_table``.
        tenant_field: Column carrying the owning tenant id in every
            tenant-scoped table.
        entries: Manifest entries, in declaration order.
    """

    tenant_table: str = "tenants"
    tenant_key: str = "id"
    tenant_field: str = "tenant_id"
    entries: list[ManifestEntry]

    @model_validator(mode="after")
    def _check_on_build(self) -> "TableManifest":
        self.check()
        return self

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def tenant_tables(self) -> list[ManifestEntry]:
        return [e for e in self.entries if e.tenant_scoped]

    @property
    def global_tables(self) -> list[ManifestEntry]:
        return [e for e in self.entries if not e.tenant_scoped]

    @property
    def table_names(self) -> list[str]:
        """Tenant-scoped table names in capture order."""
        return [e.name for e in self.capture_order()]

    def get(self, name: str) -> ManifestEntry:
        for entry in self.entries:
            if entry.name == name:
                return entry
        raise FatalError(f"Table '{name}' is not in the manifest")

    def select(self, tables: Iterable[str] | None = None) -> list[ManifestEntry]:
        """Resolve a tenant table subset (``None`` means all tenant tables).

        Raises:
            FatalError: If a name is unknown or refers to a global table.
        """
        if tables is None:
            return self.tenant_tables

        selected: list[ManifestEntry] = []
        for name in tables:
            entry = self.get(name)
            if not entry.tenant_scoped:
                raise FatalError(f"Table '{name}' is global, not tenant-scoped")
            if entry not in selected:
                selected.append(entry)
        return selected

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def capture_order(self, tables: Iterable[str] | None = None) -> list[ManifestEntry]:
        """Tenant tables in ascending rank, declaration order within a rank."""
        selected = self.select(tables)
        position = {e.name: i for i, e in enumerate(self.entries)}
        return sorted(selected, key=lambda e: (e.rank, position[e.name]))

    def insert_order(self, tables: Iterable[str] | None = None) -> list[ManifestEntry]:
        return self.capture_order(tables)

    def delete_order(self, tables: Iterable[str] | None = None) -> list[ManifestEntry]:
        return list(reversed(self.capture_order(tables)))

    def global_order(self) -> list[ManifestEntry]:
        position = {e.name: i for i, e in enumerate(self.entries)}
        return sorted(self.global_tables, key=lambda e: (e.rank, position[e.name]))

    @staticmethod
    def rank_groups(ordered: list[ManifestEntry]) -> list[list[ManifestEntry]]:
        """Split an ordered entry list into runs of equal rank."""
        groups: list[list[ManifestEntry]] = []
        for entry in ordered:
            if groups and groups[-1][0].rank == entry.rank:
                groups[-1].append(entry)
            else:
                groups.append([entry])
        return groups

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check(self) -> None:
        """Verify names are unique and declared references respect ranks.

        Raises:
            ManifestError: On duplicates, unknown references, or a
                reference to a table of equal or higher rank.
        """
        by_name: dict[str, ManifestEntry] = {}
        for entry in self.entries:
            if entry.name in by_name:
                raise ManifestError(f"Duplicate manifest table '{entry.name}'")
            if entry.name == self.tenant_table:
                raise ManifestError(
                    f"Tenant table '{self.tenant_table}' is handled separately "
                    f"and must not be a manifest entry"
                )
            by_name[entry.name] = entry

        for entry in self.entries:
            for ref in entry.references:
                if ref.table in (entry.name, self.tenant_table):
                    continue
                parent = by_name.get(ref.table)
                if parent is None:
                    raise ManifestError(
                        f"{entry.name}.{ref.field} references unknown table '{ref.table}'"
                    )
                if parent.rank >= entry.rank:
                    raise ManifestError(
                        f"{entry.name} (rank {entry.rank}) references "
                        f"{parent.name} (rank {parent.rank}); parents need a lower rank"
                    )
                if not entry.tenant_scoped and parent.tenant_scoped:
                    raise ManifestError(
                        f"Global table {entry.name} references tenant table {parent.name}"
                    )

    def verify_against(self, fk_graph: dict[str, set[str]]) -> list[str]:
        """Compare declared ranks with a live FK graph.

        Args:
            fk_graph: ``table -> set of referenced tables``, as returned by
                ``SchemaIntrospector.get_fk_graph()``.

        Returns:
            Human-readable problems; empty when the manifest is consistent.
        """
        problems: list[str] = []
        by_name = {e.name: e for e in self.entries}

        for entry in self.entries:
            live_refs = fk_graph.get(entry.name)
            if live_refs is None:
                problems.append(f"{entry.name}: table not found in database")
                continue

            declared = {ref.table for ref in entry.references}
            for ref_table in sorted(live_refs):
                if ref_table in (entry.name, self.tenant_table):
                    continue
                parent = by_name.get(ref_table)
                if parent is None:
                    continue
                if parent.rank >= entry.rank:
                    problems.append(
                        f"{entry.name} (rank {entry.rank}) references "
                        f"{ref_table} (rank {parent.rank})"
                    )
                if ref_table not in declared and parent.tenant_scoped:
                    problems.append(
                        f"{entry.name} references {ref_table} but the manifest "
                        f"does not declare it"
                    )

        return problems

    @classmethod
    def from_dependencies(
        cls,
        dependencies: dict[str, set[str]],
        global_tables: Iterable[str] = (),
        **kwargs,
    ) -> "TableManifest":
        """Build a manifest whose ranks are the longest FK path depth.

        Tables without tenant-table parents get rank 1, global tables that
        reference nothing get rank 0.  References to tables outside
        ``dependencies`` are ignored.  Declared ``references`` carry only
        table names; FK column names are unknown here and left as ``""``.

        Raises:
            ManifestError: If the dependency graph has a cycle.
        """
        tenant_table = kwargs.get("tenant_table", "tenants")
        global_set = set(global_tables)
        tables = [t for t in dependencies if t != tenant_table]
        ranks: dict[str, int] = {}
        visiting: set[str] = set()

        def rank_of(table: str) -> int:
            if table in ranks:
                return ranks[table]
            if table in visiting:
                raise ManifestError(f"Foreign-key cycle through '{table}'")
            visiting.add(table)
            parents = [
                p for p in dependencies.get(table, set())
                if p in dependencies and p not in (table, tenant_table)
            ]
            base = 0 if table in global_set else 1
            rank = max([base] + [rank_of(p) + 1 for p in parents])
            visiting.discard(table)
            ranks[table] = rank
            return rank

        entries = []
        for table in tables:
            refs = [
                ForeignKey(table=p, field="")
                for p in sorted(dependencies.get(table, set()))
                if p in dependencies and p not in (table, tenant_table)
            ]
            entries.append(
                ManifestEntry(
                    name=table,
                    rank=rank_of(table),
                    tenant_scoped=table not in global_set,
                    references=refs,
                )
            )
        return cls(entries=entries, **kwargs)


def _fk(table: str, field: str) -> ForeignKey:
    return ForeignKey(table=table, field=field)


DEFAULT_MANIFEST = TableManifest(
    entries=[
        # Global (tenant-independent) tables
        ManifestEntry(name="subscription_plans", rank=0, tenant_scoped=False),
        ManifestEntry(name="telegram_bots", rank=0, tenant_scoped=False),
        ManifestEntry(name="saas_team", rank=0, tenant_scoped=False),
        ManifestEntry(name="discount_codes", rank=0, tenant_scoped=False),
        ManifestEntry(name="backup_email_recipients", rank=0, tenant_scoped=False),
        # Tenant tables that only reference the tenant
        ManifestEntry(name="positions", rank=1),
        ManifestEntry(name="attendance_policies", rank=1),
        ManifestEntry(name="join_requests", rank=1),
        ManifestEntry(name="deleted_records", rank=1),
        ManifestEntry(name="audit_logs", rank=1),
        ManifestEntry(
            name="subscriptions", rank=1,
            references=[_fk("subscription_plans", "plan_id")],
        ),
        # Position-dependent
        ManifestEntry(
            name="position_permissions", rank=2,
            references=[_fk("positions", "position_id")],
        ),
        ManifestEntry(
            name="position_reports_to", rank=2,
            references=[
                _fk("positions", "position_id"),
                _fk("positions", "reports_to_position_id"),
            ],
        ),
        ManifestEntry(
            name="employees", rank=2,
            references=[_fk("positions", "position_id")],
        ),
        # Employee-dependent
        ManifestEntry(
            name="attendance_logs", rank=3,
            references=[_fk("employees", "employee_id")],
        ),
        ManifestEntry(
            name="salary_records", rank=3,
            references=[_fk("employees", "employee_id")],
        ),
        ManifestEntry(
            name="salary_adjustments", rank=3,
            references=[_fk("employees", "employee_id")],
        ),
        ManifestEntry(
            name="leave_requests", rank=3,
            references=[_fk("employees", "employee_id")],
        ),
        ManifestEntry(
            name="join_request_reviewers", rank=3,
            references=[_fk("employees", "employee_id")],
        ),
        ManifestEntry(
            name="pending_attendance", rank=3,
            references=[_fk("employees", "employee_id")],
        ),
        ManifestEntry(
            name="employee_location_history", rank=3,
            references=[_fk("employees", "employee_id")],
        ),
        # Attendance-dependent
        ManifestEntry(
            name="break_logs", rank=4,
            references=[
                _fk("attendance_logs", "attendance_id"),
                _fk("employees", "employee_id"),
            ],
        ),
    ]
)
