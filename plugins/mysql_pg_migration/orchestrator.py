"""
Migration Orchestrator

Sequences a full MySQL to PostgreSQL data migration: engine check, optional
schema load, conformance gate, then for each table index suppression,
trigger suppression and the batched load, and finally row count validation.

Tables are processed one at a time in name order. Foreign-key dependencies
between tables are not analyzed; trigger suppression is what lets child
tables load before their parents.
"""

from typing import Dict, List, Optional, Set
import logging
import time

from mysql_pg_migration.data_transfer import DataTransfer
from mysql_pg_migration.index_manager import IndexManager
from mysql_pg_migration.models import MigrationOptions, MigrationReport, TableResult
from mysql_pg_migration.mysql_helper import MySqlConnectionHelper
from mysql_pg_migration.postgres_helper import get_target_connection
from mysql_pg_migration.schema_inspector import (
    SourceSchema,
    TargetSchema,
    check_conformance,
    check_engines,
    collect_columns,
)
from mysql_pg_migration.schema_loader import SchemaLoader, SqlFileSchemaLoader
from mysql_pg_migration.trigger_suppression import TriggerSuppression
from mysql_pg_migration.validation import RowCountValidator, format_table_line, generate_migration_report

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """Run one migration and build its MigrationReport."""

    def __init__(
        self,
        options: MigrationOptions,
        mysql: MySqlConnectionHelper,
        postgres_conn,
        schema_loader: Optional[SchemaLoader] = None,
    ):
        """
        Args:
            options: Resolved run options
            mysql: Source connection helper (read-only)
            postgres_conn: Target psycopg2 connection (read-write)
            schema_loader: External schema step; None leaves the target schema as is
        """
        self.options = options
        self.schema_loader = schema_loader
        self.source = SourceSchema(mysql)
        self.target = TargetSchema(postgres_conn, options.target_schema)
        self.data_transfer = DataTransfer(mysql, postgres_conn, options)
        self.index_manager = IndexManager(postgres_conn, options)
        self.triggers = TriggerSuppression(postgres_conn, options)
        self.validator = RowCountValidator(self.source, self.target)

    def prepare_target_schema(self) -> None:
        if self.schema_loader is None:
            return
        if self.options.skip_schema:
            logger.info("Skipping schema load (skip_schema)")
        else:
            self.schema_loader.load_schema()
        if self.options.skip_migration_step:
            logger.info("Skipping schema migrations (skip_migration_step)")
        else:
            self.schema_loader.run_migrations()

    def check_schema(self) -> List[str]:
        """
        Gate the run on matching table and column sets.

        Returns:
            Names of the tables to migrate, sorted

        Raises:
            SchemaMismatch: Before any row is read
        """
        source_tables = [t for t in self.source.get_tables() if self.options.selects_table(t)]
        target_tables = [t for t in self.target.get_tables() if self.options.selects_table(t)]

        source_columns: Dict[str, Set[str]] = collect_columns(self.source, source_tables)
        target_columns: Dict[str, Set[str]] = collect_columns(self.target, target_tables)
        check_conformance(source_columns, target_columns)

        return sorted(source_tables)

    def migrate_table(self, table_name: str) -> TableResult:
        """Load one table with its indexes and triggers suppressed."""
        descriptor = self.target.describe_table(table_name)
        order_by = self.source.get_primary_key(table_name)

        indexes = self.index_manager.drop(table_name)
        try:
            with self.triggers.suppressed(table_name):
                result = self.data_transfer.transfer_table(descriptor, order_by)
        except Exception as e:
            logger.error(f"Migration aborted while loading {table_name}: {e}")
            for index in indexes:
                unique = "UNIQUE " if index.is_unique else ""
                logger.error(f"  dropped {unique}index {index.name} ({', '.join(index.columns)}) was not restored")
                if index.definition:
                    logger.error(f"    recreate with: {index.definition}")
            raise

        self.index_manager.restore(indexes)
        return result

    def run(self) -> MigrationReport:
        """
        Execute the whole migration.

        Row-level failures and count mismatches end up in the report. Engine
        mismatch, schema mismatch and connection loss propagate.
        """
        start_time = time.time()
        if self.options.dry_run:
            logger.info("DRY RUN: every transaction will be rolled back")

        check_engines(self.source, self.target)
        self.prepare_target_schema()
        tables = self.check_schema()
        logger.info(f"Migrating {len(tables)} tables")

        report = MigrationReport(dry_run=self.options.dry_run)
        for table_name in tables:
            result = self.migrate_table(table_name)
            report.add(result)

            logger.info(format_table_line(result))
            for error in result.errors:
                logger.warning(f"  ✗ {table_name} id={error.pk_value} ({error.stage.value}): {error.message}")

        if self.options.validate_counts and not self.options.dry_run:
            report.mismatches = self.validator.validate_tables(tables)

        report.elapsed_seconds = time.time() - start_time
        logger.info("\n" + generate_migration_report(report))
        return report


def run_migration(options: MigrationOptions) -> MigrationReport:
    """
    Convenience entrypoint: open both connections from Airflow connection
    IDs, run the migration, close the connections.
    """
    mysql = MySqlConnectionHelper(options.source_conn_id)
    postgres_conn = get_target_connection(options.target_conn_id)
    schema_loader = None
    if options.schema_file or options.migration_files:
        schema_loader = SqlFileSchemaLoader(postgres_conn, options.schema_file, options.migration_files)

    try:
        return MigrationOrchestrator(options, mysql, postgres_conn, schema_loader).run()
    finally:
        mysql.close()
        if not postgres_conn.closed:
            postgres_conn.close()
