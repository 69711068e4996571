"""
Trigger Suppression Module

Disables every trigger on a target table for the duration of its bulk load.
In PostgreSQL foreign-key and other constraint triggers are included in
DISABLE TRIGGER ALL, which needs superuser (or table owner with
session_replication_role privileges).
"""

import contextlib
import logging
from psycopg2 import sql

from mysql_pg_migration.models import MigrationOptions
from mysql_pg_migration.postgres_helper import qualified_table, target_transaction

logger = logging.getLogger(__name__)


class TriggerSuppression:
    """Toggle ALL triggers on target tables."""

    def __init__(self, conn, options: MigrationOptions):
        self.conn = conn
        self.options = options

    def _alter(self, table_name: str, action: str) -> None:
        statement = sql.SQL("ALTER TABLE {} {} TRIGGER ALL").format(
            qualified_table(self.options.target_schema, table_name),
            sql.SQL(action),
        )
        with target_transaction(self.conn, table=table_name, phase=f"trigger-{action.lower()}") as cursor:
            cursor.execute(statement)

    def disable(self, table_name: str) -> None:
        self._alter(table_name, "DISABLE")
        logger.info(f"Disabled triggers on {table_name}")

    def enable(self, table_name: str) -> None:
        self._alter(table_name, "ENABLE")
        logger.info(f"Enabled triggers on {table_name}")

    @contextlib.contextmanager
    def suppressed(self, table_name: str):
        """
        Keep triggers disabled for the body of the with-block.

        Triggers are re-enabled on every exit path. When the body is already
        failing, an error while re-enabling is logged and the body's error
        is the one that propagates.
        """
        if not self.options.drop_triggers:
            yield
            return

        self.disable(table_name)
        try:
            yield
        except BaseException:
            try:
                self.enable(table_name)
            except Exception:
                logger.exception(
                    f"Could not re-enable triggers on {table_name}; "
                    f"run ALTER TABLE {table_name} ENABLE TRIGGER ALL manually"
                )
            raise
        else:
            self.enable(table_name)
