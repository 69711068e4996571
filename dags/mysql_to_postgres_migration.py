"""
MySQL to PostgreSQL Data Migration DAG

This DAG copies every row of a MySQL database into an already-created
PostgreSQL schema. It handles:
1. Engine check of both connections
2. Optional schema load and schema migrations on the target
3. Schema conformance gate (same tables and columns on both sides)
4. Paged transfer with per-row recovery, trigger and index suppression
5. Row count validation and reporting

Row-level failures never stop the run; they are listed in the report that
the migration task returns to XCom.
"""

from airflow.sdk import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import Any, Dict
import logging

from mysql_pg_migration.models import DEFAULT_PAGE_SIZE, DEFAULT_ZERO_DATE_PLACEHOLDER, MigrationOptions
from mysql_pg_migration.orchestrator import run_migration

logger = logging.getLogger(__name__)


@dag(
    start_date=datetime(2025, 1, 1),
    schedule=None,  # Run manually or trigger via API
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        # The load truncates each target table first, so a retry starts clean
        "retries": 1,
        "retry_delay": timedelta(minutes=1),
    },
    params={
        "source_conn_id": Param(
            default="mysql_source",
            type="string",
            description="MySQL connection ID"
        ),
        "target_conn_id": Param(
            default="postgres_target",
            type="string",
            description="PostgreSQL connection ID"
        ),
        "target_schema": Param(
            default="public",
            type="string",
            description="Target schema in PostgreSQL"
        ),
        "page_size": Param(
            default=DEFAULT_PAGE_SIZE,
            type="integer",
            minimum=1,
            maximum=500000,
            description="Rows fetched and inserted per page (one transaction per page)"
        ),
        "include_tables": Param(
            default=[],
            type="array",
            description="Only migrate these tables (empty means all)"
        ),
        "exclude_tables": Param(
            default=[],
            type="array",
            description="Never migrate these tables"
        ),
        "drop_triggers": Param(
            default=False,
            type="boolean",
            description="Disable target triggers while loading each table"
        ),
        "drop_indexes": Param(
            default=False,
            type="boolean",
            description="Drop secondary indexes before loading and recreate them after"
        ),
        "skip_schema": Param(
            default=False,
            type="boolean",
            description="Do not (re)load the target schema file"
        ),
        "skip_migration_step": Param(
            default=False,
            type="boolean",
            description="Do not apply schema migration files"
        ),
        "dry_run": Param(
            default=False,
            type="boolean",
            description="Run everything but roll back every transaction"
        ),
        "show_progress": Param(
            default=False,
            type="boolean",
            description="Log a line per page"
        ),
        "zero_date_placeholder": Param(
            default=DEFAULT_ZERO_DATE_PLACEHOLDER,
            type="string",
            description="Replacement for MySQL's 0000-00-00 dates"
        ),
        "schema_file": Param(
            default="",
            type="string",
            description="Path of a SQL schema dump to load into the target first"
        ),
        "migration_files": Param(
            default=[],
            type="array",
            description="SQL migration files applied after the schema load, in order"
        ),
    },
    tags=["migration", "mysql", "postgres", "etl", "full-refresh"],
)
def mysql_to_postgres_migration():
    """
    Main DAG for MySQL to PostgreSQL data migration.
    """

    @task
    def migrate_data(**context) -> Dict[str, Any]:
        """
        Run the whole migration.

        Returns:
            MigrationReport as a dictionary
        """
        options = MigrationOptions.from_params(context["params"])
        logger.info(
            f"Migrating {options.source_conn_id} -> {options.target_conn_id} "
            f"(schema {options.target_schema}, page size {options.page_size:,})"
        )

        report = run_migration(options)

        context["ti"].xcom_push(key="rows_migrated", value=report.rows_migrated)
        context["ti"].xcom_push(key="rows_failed", value=report.rows_failed)
        return report.to_dict()

    @task
    def summarize(report: Dict[str, Any]) -> str:
        """Log a short summary of the migration."""
        failed_tables = [t["table"] for t in report["tables"] if t["rows_failed"]]
        status = "DRY RUN complete" if report["dry_run"] else "Migration complete"

        logger.info(f"{status}: {report['rows_migrated']:,} rows migrated, {report['rows_failed']:,} rows failed")
        if failed_tables:
            logger.warning(f"Tables with failed rows: {', '.join(failed_tables)}")
        for mismatch in report["mismatches"]:
            logger.warning(
                f"✗ {mismatch['table']}: source={mismatch['source_count']:,} "
                f"target={mismatch['target_count']:,}"
            )
        return status

    summarize(migrate_data())


# Instantiate the DAG
mysql_to_postgres_migration()
