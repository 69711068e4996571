"""
Data Migration Validation Module

Post-migration row count reconciliation between MySQL and PostgreSQL, and
the human-readable migration report.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from mysql_pg_migration.models import MigrationReport, RowCountMismatch
from mysql_pg_migration.schema_inspector import SourceSchema, TargetSchema

logger = logging.getLogger(__name__)


class RowCountValidator:
    """Compare source and target row counts after a migration."""

    def __init__(self, source: SourceSchema, target: TargetSchema):
        """
        Initialize the migration validator.

        Args:
            source: Source schema reader (MySQL)
            target: Target schema reader (PostgreSQL)
        """
        self.source = source
        self.target = target

    def validate_row_count(self, table_name: str) -> Dict[str, Any]:
        """
        Compare row counts between source and target tables.

        Args:
            table_name: Table name (identical on both sides)

        Returns:
            Validation result dictionary
        """
        source_count = self.source.get_row_count(table_name) or 0
        target_count = self.target.get_row_count(table_name) or 0

        row_difference = target_count - source_count
        percentage_difference = (row_difference / source_count * 100) if source_count > 0 else 0

        validation_result = {
            'table_name': table_name,
            'source_count': source_count,
            'target_count': target_count,
            'row_difference': row_difference,
            'percentage_difference': percentage_difference,
            'validation_passed': source_count == target_count,
            'validation_time': datetime.now().isoformat(),
        }

        if validation_result['validation_passed']:
            logger.info(f"✓ Row count validation passed for {table_name}: {source_count:,} rows")
        else:
            logger.warning(
                f"✗ Row count mismatch for {table_name}: "
                f"Source={source_count:,}, Target={target_count:,}, "
                f"Difference={row_difference:+,} ({percentage_difference:+.2f}%)"
            )

        return validation_result

    def validate_tables(self, tables: List[str]) -> List[RowCountMismatch]:
        """
        Validate every migrated table.

        Mismatches are diagnostics: they are returned for the report and
        never raised.

        Returns:
            One RowCountMismatch per table whose counts differ
        """
        mismatches = []
        for table_name in tables:
            result = self.validate_row_count(table_name)
            if not result['validation_passed']:
                mismatches.append(RowCountMismatch(
                    table=table_name,
                    source_count=result['source_count'],
                    target_count=result['target_count'],
                ))
        return mismatches


def format_table_line(table_result) -> str:
    """One progress line per table: rows, errors, elapsed, throughput."""
    return (
        f"{table_result.table}: {table_result.rows_migrated:,} rows, "
        f"{table_result.rows_failed:,} errors in {table_result.elapsed_seconds:.2f}s "
        f"({table_result.rows_per_second:,.0f} rows/sec)"
    )


def generate_migration_report(report: MigrationReport, generated_at: Optional[datetime] = None) -> str:
    """
    Generate a human-readable migration report.

    Args:
        report: Finished MigrationReport
        generated_at: Timestamp to print (defaults to now)

    Returns:
        Formatted report string
    """
    generated_at = generated_at or datetime.now()
    total_time = report.elapsed_seconds
    avg_rate = report.rows_migrated / total_time if total_time > 0 else 0

    report_lines = [
        "=" * 80,
        "DATA MIGRATION REPORT" + (" (DRY RUN, NOTHING COMMITTED)" if report.dry_run else ""),
        "=" * 80,
        f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "SUMMARY",
        "-" * 40,
        f"Total Tables: {len(report.tables)}",
        f"Rows Migrated: {report.rows_migrated:,}",
        f"Rows Failed: {report.rows_failed:,}",
        f"Total Time: {total_time:.2f} seconds",
        f"Average Transfer Rate: {avg_rate:,.0f} rows/second",
        "",
        "TABLE DETAILS",
        "-" * 40,
    ]

    for table_result in report.tables:
        status = "✓" if table_result.rows_failed == 0 else "✗"
        report_lines.append(f"{status} {format_table_line(table_result)}")
        if table_result.errors:
            ids = ', '.join(str(e.pk_value) for e in table_result.errors)
            report_lines.append(f"    failed ids: {ids}")

    if report.mismatches:
        report_lines.extend([
            "",
            "ROW COUNT MISMATCHES",
            "-" * 40,
        ])
        for mismatch in report.mismatches:
            report_lines.append(
                f"  • {mismatch.table:<30} | Source: {mismatch.source_count:>10,} | "
                f"Target: {mismatch.target_count:>10,} | Diff: {mismatch.difference:>10,}"
            )

    report_lines.extend([
        "",
        "=" * 80,
        "END OF REPORT",
        "=" * 80,
    ])

    return "\n".join(report_lines)
