"""
MySQL to PostgreSQL Data Migration Utilities

This package moves table data from a MySQL source into a PostgreSQL target
whose schema has already been created, using Apache Airflow connections.

Modules:
- models: Options, descriptors, tagged values and the migration report
- exceptions: Fatal errors (engine mismatch, schema mismatch, connection loss)
- mysql_helper: PyMySQL connection helper for the source
- postgres_helper: Target connection and transaction helpers
- schema_inspector: Read both catalogs, check engines and schema conformance
- schema_loader: Load the target schema and apply migration scripts
- value_normalizer: Zero-date rewrite and encoding repair of tagged values
- index_manager: Drop and restore secondary indexes around a load
- trigger_suppression: Disable triggers for the duration of a load
- data_transfer: Paged extraction and the transactional batch loader
- validation: Row count reconciliation and the migration report
- orchestrator: Sequence a whole migration

Options:
- MIGRATION_PAGE_SIZE=N: Default rows per page (10000)
"""

__version__ = "1.0.0"

from mysql_pg_migration import models
from mysql_pg_migration import exceptions
from mysql_pg_migration import value_normalizer
from mysql_pg_migration import schema_inspector
from mysql_pg_migration import data_transfer
from mysql_pg_migration import validation
from mysql_pg_migration import orchestrator

__all__ = [
    "models",
    "exceptions",
    "value_normalizer",
    "schema_inspector",
    "data_transfer",
    "validation",
    "orchestrator",
]
