"""
Schema Inspection Module

Reads table and column metadata from the MySQL source and the PostgreSQL
target, verifies that both sides run the expected engines, and gates the
migration on the two schemas having identical table and column sets.
"""

from typing import Dict, List, Set, Tuple
import logging

from mysql_pg_migration.exceptions import EngineMismatch, SchemaMismatch
from mysql_pg_migration.models import ColumnDescriptor, TableDescriptor
from mysql_pg_migration.mysql_helper import MySqlConnectionHelper, quote_mysql_identifier
from mysql_pg_migration.postgres_helper import qualified_table, target_transaction
from psycopg2 import sql

logger = logging.getLogger(__name__)

# Servers that speak the MySQL protocol and report a MySQL-like version
# but are different engines underneath
MYSQL_IMPOSTORS = (
    "tidb", "vitess", "singlestore", "memsql", "doris", "starrocks",
    "clickhouse", "oceanbase", "manticore",
)


class SourceSchema:
    """Metadata queries against the MySQL source database."""

    def __init__(self, mysql: MySqlConnectionHelper):
        self.mysql = mysql

    def version(self) -> str:
        return str(self.mysql.get_first("SELECT VERSION()")[0])

    def version_comment(self) -> str:
        row = self.mysql.get_first("SELECT @@version_comment")
        return str(row[0]) if row and row[0] is not None else ""

    def get_tables(self) -> List[str]:
        query = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = DATABASE()
          AND table_type = 'BASE TABLE'
        ORDER BY table_name
        """
        return [row[0] for row in self.mysql.get_records(query)]

    def get_columns(self, table_name: str) -> List[str]:
        query = """
        SELECT column_name
        FROM information_schema.columns
        WHERE table_schema = DATABASE() AND table_name = %s
        ORDER BY ordinal_position
        """
        return [row[0] for row in self.mysql.get_records(query, [table_name])]

    def get_primary_key(self, table_name: str) -> List[str]:
        query = """
        SELECT column_name
        FROM information_schema.key_column_usage
        WHERE table_schema = DATABASE()
          AND table_name = %s
          AND constraint_name = 'PRIMARY'
        ORDER BY ordinal_position
        """
        return [row[0] for row in self.mysql.get_records(query, [table_name])]

    def get_row_count(self, table_name: str) -> int:
        result = self.mysql.get_first(f"SELECT COUNT(*) FROM {quote_mysql_identifier(table_name)}")
        return (result[0] if result else 0) or 0


class TargetSchema:
    """Metadata queries against the PostgreSQL target (authoritative for column order and types)."""

    def __init__(self, conn, schema_name: str = 'public'):
        self.conn = conn
        self.schema_name = schema_name

    def _fetchall(self, query, parameters=None) -> List[Tuple]:
        # Metadata reads never leave a transaction open on the target
        with target_transaction(self.conn, phase="inspect", commit=False) as cursor:
            cursor.execute(query, parameters)
            return cursor.fetchall()

    def version(self) -> str:
        return str(self._fetchall("SELECT version()")[0][0])

    def get_tables(self) -> List[str]:
        query = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = %s
          AND table_type = 'BASE TABLE'
        ORDER BY table_name
        """
        return [row[0] for row in self._fetchall(query, [self.schema_name])]

    def get_columns(self, table_name: str) -> List[ColumnDescriptor]:
        # format_type() gives a castable type name, unlike information_schema's
        # 'USER-DEFINED' / 'ARRAY', so it can be used in PREPARE parameter lists
        query = """
        SELECT a.attname, format_type(a.atttypid, a.atttypmod), a.attnum
        FROM pg_attribute a
        JOIN pg_class c ON c.oid = a.attrelid
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname = %s
          AND c.relname = %s
          AND a.attnum > 0
          AND NOT a.attisdropped
        ORDER BY a.attnum
        """
        rows = self._fetchall(query, [self.schema_name, table_name])
        return [ColumnDescriptor(name=row[0], data_type=row[1], ordinal=row[2]) for row in rows]

    def get_primary_key(self, table_name: str) -> List[str]:
        query = """
        SELECT kcu.column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON tc.constraint_name = kcu.constraint_name
         AND tc.table_schema = kcu.table_schema
         AND tc.table_name = kcu.table_name
        WHERE tc.constraint_type = 'PRIMARY KEY'
          AND tc.table_schema = %s
          AND tc.table_name = %s
        ORDER BY kcu.ordinal_position
        """
        return [row[0] for row in self._fetchall(query, [self.schema_name, table_name])]

    def describe_table(self, table_name: str) -> TableDescriptor:
        return TableDescriptor(
            name=table_name,
            columns=tuple(self.get_columns(table_name)),
            primary_key=tuple(self.get_primary_key(table_name)),
        )

    def get_row_count(self, table_name: str) -> int:
        query = sql.SQL("SELECT COUNT(*) FROM {}").format(qualified_table(self.schema_name, table_name))
        rows = self._fetchall(query)
        return (rows[0][0] if rows else 0) or 0


def check_engines(source: SourceSchema, target: TargetSchema) -> Tuple[str, str]:
    """
    Verify the source is MySQL/MariaDB and the target is PostgreSQL.

    Returns:
        Tuple of (source_version, target_version)

    Raises:
        EngineMismatch: If either side is a different engine
    """
    source_version = source.version()
    # MySQL reports e.g. '8.0.36', MariaDB '10.11.6-MariaDB'
    if not source_version or not source_version[0].isdigit():
        raise EngineMismatch("source", "MySQL", source_version)
    # TiDB reports '8.0.11-TiDB-v7.5.0'; others only say so in @@version_comment
    comment = source.version_comment()
    reported = f"{source_version} {comment}".lower()
    if any(name in reported for name in MYSQL_IMPOSTORS):
        raise EngineMismatch("source", "MySQL", f"{source_version} ({comment})")

    target_version = target.version()
    if not target_version.startswith("PostgreSQL"):
        raise EngineMismatch("target", "PostgreSQL", target_version)

    logger.info(f"Source: MySQL {source_version}")
    logger.info(f"Target: {target_version.split(',')[0]}")
    return source_version, target_version


def check_conformance(
    source_columns: Dict[str, Set[str]],
    target_columns: Dict[str, Set[str]],
) -> None:
    """
    Require identical table sets and, per shared table, identical column sets.

    Only presence is compared, not types. Rows are aligned positionally by
    column name, so any difference makes the migration unsafe.

    Args:
        source_columns: {table: set of column names} for the source
        target_columns: {table: set of column names} for the target

    Raises:
        SchemaMismatch: Listing every asymmetric difference
    """
    source_tables = set(source_columns)
    target_tables = set(target_columns)

    column_differences: Dict[str, Dict[str, List[str]]] = {}
    for table in sorted(source_tables & target_tables):
        source_only = source_columns[table] - target_columns[table]
        target_only = target_columns[table] - source_columns[table]
        if source_only or target_only:
            column_differences[table] = {
                'source_only': sorted(source_only),
                'target_only': sorted(target_only),
            }

    source_only_tables = source_tables - target_tables
    target_only_tables = target_tables - source_tables
    if source_only_tables or target_only_tables or column_differences:
        error = SchemaMismatch(list(source_only_tables), list(target_only_tables), column_differences)
        logger.error(str(error))
        raise error

    logger.info(f"✓ Schema conformance check passed for {len(source_tables)} tables")


def collect_columns(schema, tables: List[str]) -> Dict[str, Set[str]]:
    """Build {table: set of column names} from a SourceSchema or TargetSchema."""
    result = {}
    for table in tables:
        columns = schema.get_columns(table)
        result[table] = {c.name if isinstance(c, ColumnDescriptor) else c for c in columns}
    return result
