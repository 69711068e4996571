"""
PostgreSQL target helpers shared by the loader, index manager and trigger
suppression: connection acquisition, identifier quoting, and translation of
lost connections into ConnectionFailure.
"""

from typing import Optional
from airflow.providers.postgres.hooks.postgres import PostgresHook
import contextlib
import logging
import psycopg2
from psycopg2 import sql

from mysql_pg_migration.exceptions import ConnectionFailure

logger = logging.getLogger(__name__)


def get_target_connection(postgres_conn_id: str):
    """Open the read-write target connection from an Airflow connection ID."""
    hook = PostgresHook(postgres_conn_id=postgres_conn_id)
    try:
        conn = hook.get_conn()
    except psycopg2.OperationalError as e:
        raise ConnectionFailure(f"Could not connect to PostgreSQL target '{postgres_conn_id}': {e}") from e
    conn.autocommit = False
    return conn


def qualified_table(schema_name: str, table_name: str) -> sql.Composed:
    return sql.SQL("{}.{}").format(sql.Identifier(schema_name), sql.Identifier(table_name))


def connection_lost(conn, error: Exception) -> bool:
    """True when the error means the target connection itself is gone."""
    return isinstance(error, (psycopg2.OperationalError, psycopg2.InterfaceError)) and bool(conn.closed)


@contextlib.contextmanager
def target_transaction(conn, table: Optional[str] = None, phase: Optional[str] = None, commit: bool = True):
    """
    Run a block in its own target transaction.

    Commits on success (or rolls back when commit is False, used for dry
    runs). Any database error rolls back and propagates; a dropped
    connection is raised as ConnectionFailure.
    """
    try:
        with conn.cursor() as cursor:
            yield cursor
        if commit:
            conn.commit()
        else:
            conn.rollback()
    except psycopg2.Error as e:
        if connection_lost(conn, e):
            raise ConnectionFailure(f"Lost connection to PostgreSQL target: {e}", table=table, phase=phase) from e
        conn.rollback()
        raise
