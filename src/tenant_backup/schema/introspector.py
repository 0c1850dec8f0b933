"""PostgreSQL foreign-key introspection via information_schema.

Reads the live table list and the foreign-key graph so that a
``TableManifest`` can be checked against (or derived from) the actual
database.

Uses psycopg (v3) for PostgreSQL connections.
"""

import psycopg
from psycopg import Connection


class SchemaIntrospector:
    """Introspects PostgreSQL tables and foreign keys.

    Usage:
        with SchemaIntrospector(database_url) as introspector:
            graph = introspector.get_fk_graph()
            problems = DEFAULT_MANIFEST.verify_against(graph)
    """

    # Tables to exclude from introspection (system tables)
    EXCLUDED_TABLES = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(self, database_url: str):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL
        """
        self._database_url = database_url
        self._conn: Connection | None = None

    def __enter__(self) -> "SchemaIntrospector":
        """Context manager entry - opens connection."""
        # Append connect_timeout if not already in URL
        url = self._database_url
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout=10"

        self._conn = psycopg.connect(url)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _require_conn(self) -> Connection:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use with statement.")
        return self._conn

    def get_tables(self, schema_name: str = "public") -> list[str]:
        """Get all base table names in schema (system tables excluded)."""
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        with self._require_conn().cursor() as cur:
            cur.execute(query, (schema_name,))
            return [row[0] for row in cur.fetchall() if row[0] not in self.EXCLUDED_TABLES]

    def get_foreign_keys(self, schema_name: str = "public") -> list[tuple[str, str, str]]:
        """Get every foreign key as ``(table, column, referenced_table)``."""
        query = """
            SELECT
                tc.table_name,
                kcu.column_name,
                ccu.table_name AS references_table
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.table_schema = ccu.table_schema
            WHERE tc.table_schema = %s
              AND tc.constraint_type = 'FOREIGN KEY'
            ORDER BY tc.table_name, kcu.column_name
        """
        with self._require_conn().cursor() as cur:
            cur.execute(query, (schema_name,))
            return [(row[0], row[1], row[2]) for row in cur.fetchall()]

    def get_fk_graph(self, schema_name: str = "public") -> dict[str, set[str]]:
        """Map every table to the set of tables it references.

        Tables without foreign keys map to an empty set, so the keys are
        the complete table list.

        Returns:
            Dict mapping table name to referenced table names.
        """
        graph: dict[str, set[str]] = {t: set() for t in self.get_tables(schema_name)}
        for table, _column, ref_table in self.get_foreign_keys(schema_name):
            if table in graph:
                graph[table].add(ref_table)
        return graph
