"""
Index Management Module

Drops a target table's secondary indexes before its bulk load and recreates
them afterwards, so inserts don't pay per-row index maintenance.

Indexes backing a constraint (primary keys, UNIQUE constraints) are left in
place: PostgreSQL only lets those go with the constraint itself.
"""

from typing import List
import logging
from psycopg2 import sql

from mysql_pg_migration.models import IndexDescriptor, MigrationOptions
from mysql_pg_migration.postgres_helper import qualified_table, target_transaction

logger = logging.getLogger(__name__)

# Key columns in index order (expression keys, attnum 0, have no column name)
# plus the full definition, so partial and expression indexes come back intact
INDEX_QUERY = """
SELECT ic.relname AS index_name,
       ix.indisunique AS is_unique,
       array_remove(array_agg(a.attname ORDER BY k.ord), NULL) AS columns,
       pg_get_indexdef(ix.indexrelid) AS definition
FROM pg_index ix
JOIN pg_class t ON t.oid = ix.indrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
JOIN pg_class ic ON ic.oid = ix.indexrelid
LEFT JOIN LATERAL unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord) ON true
LEFT JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
WHERE n.nspname = %s
  AND t.relname = %s
  AND NOT EXISTS (SELECT 1 FROM pg_constraint c WHERE c.conindid = ix.indexrelid)
GROUP BY ic.relname, ix.indisunique, ix.indexrelid
ORDER BY ic.relname
"""


class IndexManager:
    """Capture, drop and recreate the secondary indexes of target tables."""

    def __init__(self, conn, options: MigrationOptions):
        """
        Args:
            conn: Open psycopg2 connection to the target
            options: Run options (drop_indexes, dry_run, target_schema)
        """
        self.conn = conn
        self.options = options
        self.schema_name = options.target_schema

    @property
    def enabled(self) -> bool:
        # Recreating indexes over rolled-back data is pointless
        return self.options.drop_indexes and not self.options.dry_run

    def get_indexes(self, table_name: str) -> List[IndexDescriptor]:
        with target_transaction(self.conn, table=table_name, phase="index-capture", commit=False) as cursor:
            cursor.execute(INDEX_QUERY, (self.schema_name, table_name))
            rows = cursor.fetchall()
        return [
            IndexDescriptor(
                name=row[0], table=table_name, columns=tuple(row[2]), is_unique=bool(row[1]), definition=row[3],
            )
            for row in rows
        ]

    def drop(self, table_name: str) -> List[IndexDescriptor]:
        """
        Drop every secondary index on a table in a single transaction.

        Args:
            table_name: Target table name

        Returns:
            Captured descriptors, to be handed back to restore()
        """
        if not self.enabled:
            return []

        indexes = self.get_indexes(table_name)
        if not indexes:
            return []

        with target_transaction(self.conn, table=table_name, phase="index-drop") as cursor:
            for index in indexes:
                cursor.execute(sql.SQL("DROP INDEX {}").format(sql.Identifier(self.schema_name, index.name)))

        logger.info(f"Dropped {len(indexes)} indexes on {table_name}: {', '.join(i.name for i in indexes)}")
        return indexes

    def restore(self, indexes: List[IndexDescriptor]) -> int:
        """
        Recreate indexes exactly as captured, in one transaction per table.

        Column order is preserved as captured since it decides which
        queries a composite index can serve.

        Returns:
            Number of indexes recreated
        """
        if not self.enabled or not indexes:
            return 0

        tables = []
        for index in indexes:
            if index.table not in tables:
                tables.append(index.table)

        for table_name in tables:
            table_indexes = [i for i in indexes if i.table == table_name]
            with target_transaction(self.conn, table=table_name, phase="index-restore") as cursor:
                for index in table_indexes:
                    cursor.execute(self.create_statement(index))
            logger.info(f"Restored {len(table_indexes)} indexes on {table_name}")

        return len(indexes)

    def create_statement(self, index: IndexDescriptor) -> sql.Composable:
        """
        Build the statement that recreates a captured index.

        The captured definition is replayed verbatim. An index known only by
        its key columns gets a plain CREATE [UNIQUE] INDEX.
        """
        if index.definition:
            return sql.SQL(index.definition)

        unique_clause = sql.SQL("UNIQUE ") if index.is_unique else sql.SQL("")
        return sql.SQL("CREATE {}INDEX {} ON {} ({})").format(
            unique_clause,
            sql.Identifier(index.name),
            qualified_table(self.schema_name, index.table),
            sql.SQL(", ").join(sql.Identifier(col) for col in index.columns),
        )
