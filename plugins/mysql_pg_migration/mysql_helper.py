"""
MySQL Connection Helper

Lightweight source-side connection wrapper built on an Airflow connection
and PyMySQL. Exposes the small MySqlHook-like surface the migration needs
(get_records, get_first) over a single long-lived read-only connection,
since the source is scanned strictly sequentially.

The connection is opened with use_unicode=False. PyMySQL would otherwise
decode text columns strictly and fail the whole page on one invalid byte
sequence. get_raw_records hands table data over undecoded so the loader can
tag and repair it; get_records and get_first decode text for metadata
queries.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from airflow.hooks.base import BaseHook
import logging
import pymysql
from pymysql import converters
from pymysql.constants import FIELD_TYPE

from mysql_pg_migration.exceptions import ConnectionFailure

logger = logging.getLogger(__name__)

DEFAULT_MYSQL_PORT = 3306


def _convert_decimal(value):
    # Decimal() rejects bytes; every other default decoder accepts them
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("ascii")
    return Decimal(value)


RAW_CONVERSIONS = dict(converters.conversions)
RAW_CONVERSIONS[FIELD_TYPE.DECIMAL] = _convert_decimal
RAW_CONVERSIONS[FIELD_TYPE.NEWDECIMAL] = _convert_decimal


def quote_mysql_identifier(identifier: str) -> str:
    """Backtick-quote a MySQL identifier, doubling embedded backticks."""
    escaped = identifier.replace("`", "``")
    return f"`{escaped}`"


class MySqlConnectionHelper:
    """
    Source connection for the migration.

    The connection is opened lazily on first use and reused until close().
    Lost connections surface as ConnectionFailure; query errors propagate
    as the driver raised them.
    """

    def __init__(self, mysql_conn_id: str, connection=None):
        """
        Initialize the MySQL connection helper.

        Args:
            mysql_conn_id: Airflow connection ID for the MySQL source
            connection: Optional already-open DB-API connection to reuse
        """
        self.conn_id = mysql_conn_id
        self._conn_config: Optional[Dict[str, Any]] = None
        self._conn = connection

    def _get_connection_config(self) -> Dict[str, Any]:
        """
        Get PyMySQL connect() arguments from the Airflow connection.

        Returns:
            Dictionary of keyword arguments for pymysql.connect
        """
        if self._conn_config is None:
            conn = BaseHook.get_connection(self.conn_id)
            extra = conn.extra_dejson or {}

            # Airflow stores the MySQL database name in the 'schema' field
            self._conn_config = {
                'host': conn.host or 'localhost',
                'port': int(conn.port or DEFAULT_MYSQL_PORT),
                'user': conn.login,
                'password': conn.password or '',
                'database': conn.schema,
                'charset': extra.get('charset', 'utf8mb4'),
                'connect_timeout': int(extra.get('connect_timeout', 30)),
                'use_unicode': False,
                'conv': RAW_CONVERSIONS,
            }

        return self._conn_config

    @property
    def database(self) -> str:
        return self._get_connection_config()['database']

    def get_conn(self):
        """Return the open source connection, connecting on first use."""
        if self._conn is None:
            config = self._get_connection_config()
            logger.info(f"Connecting to MySQL {config['host']}:{config['port']}/{config['database']}")
            try:
                self._conn = pymysql.connect(**config)
            except pymysql.err.OperationalError as e:
                raise ConnectionFailure(f"Could not connect to MySQL source '{self.conn_id}': {e}") from e
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except pymysql.err.Error as e:
                logger.warning(f"Error closing MySQL connection: {e}")
            self._conn = None

    def _execute(self, sql: str, parameters: Optional[List[Any]], fetch_all: bool):
        conn = self.get_conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(sql, parameters or None)
                return cursor.fetchall() if fetch_all else cursor.fetchone()
        except (pymysql.err.OperationalError, pymysql.err.InterfaceError) as e:
            self._conn = None
            raise ConnectionFailure(f"Lost connection to MySQL source: {e}") from e
        except pymysql.err.Error as e:
            logger.error(f"Error executing query: {e}")
            logger.error(f"Query: {sql}")
            if parameters:
                logger.error(f"Parameters: {parameters}")
            raise

    def text_encoding(self) -> str:
        """Python codec matching the connection charset."""
        encoding = getattr(self.get_conn(), 'encoding', None)
        return encoding if isinstance(encoding, str) else 'utf-8'

    def _decode_row(self, row: Tuple[Any, ...]) -> Tuple[Any, ...]:
        encoding = self.text_encoding()
        return tuple(
            bytes(value).decode(encoding) if isinstance(value, (bytes, bytearray)) else value
            for value in row
        )

    def get_raw_records(self, sql: str, parameters: Optional[List[Any]] = None) -> List[Tuple[Any, ...]]:
        """
        Execute a query and return all rows with text left as bytes.

        Used for table data, where a value may hold bytes that are not valid
        in the connection charset.
        """
        return list(self._execute(sql, parameters, fetch_all=True))

    def get_records(self, sql: str, parameters: Optional[List[Any]] = None) -> List[Tuple[Any, ...]]:
        """
        Execute a query and return all rows as a list of tuples.

        Args:
            sql: SQL query to execute (%s placeholders)
            parameters: Optional list of parameters for the query

        Returns:
            List of tuples, one per row, with text decoded
        """
        return [self._decode_row(row) for row in self._execute(sql, parameters, fetch_all=True)]

    def get_first(self, sql: str, parameters: Optional[List[Any]] = None) -> Optional[Tuple[Any, ...]]:
        """
        Execute a query and return the first row as a tuple.

        Returns:
            First row as a tuple with text decoded, or None if no rows
        """
        row = self._execute(sql, parameters, fetch_all=False)
        return self._decode_row(row) if row is not None else None
