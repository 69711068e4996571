"""
Schema Loading Module

The target schema is owned by an external schema-migration tool. Before any
data moves, the orchestrator asks a SchemaLoader to (re)load the schema dump
into the target and then apply pending migrations. SqlFileSchemaLoader does
both from plain SQL files.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence
import logging

from mysql_pg_migration.postgres_helper import target_transaction

logger = logging.getLogger(__name__)


class SchemaLoader(ABC):
    """Interface to the external schema-migration step."""

    @abstractmethod
    def load_schema(self) -> None:
        """(Re)create the target schema from its definition."""

    @abstractmethod
    def run_migrations(self) -> List[str]:
        """Apply pending schema migrations; return what was applied."""


class SqlFileSchemaLoader(SchemaLoader):
    """Load a DDL dump and migration scripts into PostgreSQL from SQL files."""

    def __init__(self, conn, schema_file: Optional[str] = None, migration_files: Sequence[str] = ()):
        """
        Args:
            conn: Target psycopg2 connection
            schema_file: Path of the schema DDL dump
            migration_files: Migration SQL files, applied in the given order
        """
        self.conn = conn
        self.schema_file = schema_file
        self.migration_files = list(migration_files)

    def _execute_file(self, path: str, phase: str) -> None:
        ddl = Path(path).read_text(encoding="utf-8")
        logger.info(f"Executing {path} ({len(ddl):,} bytes)")
        with target_transaction(self.conn, phase=phase) as cursor:
            cursor.execute(ddl)

    def load_schema(self) -> None:
        if not self.schema_file:
            logger.info("No schema file configured, keeping the existing target schema")
            return
        self._execute_file(self.schema_file, "schema-load")
        logger.info(f"✓ Loaded target schema from {self.schema_file}")

    def run_migrations(self) -> List[str]:
        applied = []
        for path in self.migration_files:
            self._execute_file(path, "schema-migrate")
            applied.append(path)
        logger.info(f"Applied {len(applied)} schema migrations")
        return applied
