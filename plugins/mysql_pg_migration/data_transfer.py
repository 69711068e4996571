"""
Data Transfer Module

This module moves table data from MySQL to PostgreSQL: offset-paginated
reads from the source, and transactional batched inserts into the target
through one prepared statement per table.

A rejected row never costs the rest of its page. The loader rolls back,
replays the rows already sent in the aborted transaction, then retries the
offending row through UTF-8 repair and ASCII transliteration before giving
up on it and recording its primary key.

Precondition: the source must be quiesced (read-only) for the duration of a
table's scan. Offset pagination skips or repeats rows if rows are inserted or
deleted in already-scanned ranges.
"""

from typing import Any, Iterator, List, NamedTuple, Optional
from enum import Enum
import logging
import time
import psycopg2
from psycopg2 import sql

from mysql_pg_migration.exceptions import ConnectionFailure
from mysql_pg_migration.models import (
    ErrorRecord,
    FailureStage,
    MigrationOptions,
    Page,
    RepairRecord,
    RepairStage,
    Row,
    TableDescriptor,
    TableResult,
)
from mysql_pg_migration.mysql_helper import MySqlConnectionHelper, quote_mysql_identifier
from mysql_pg_migration.postgres_helper import connection_lost, qualified_table, target_transaction
from mysql_pg_migration.value_normalizer import (
    has_text,
    normalize_row,
    repair_utf8,
    row_params,
    tag_row,
    transliterate_ascii,
)

logger = logging.getLogger(__name__)


class PagedExtractor:
    """Stream a source table in bounded pages using LIMIT/OFFSET."""

    def __init__(self, mysql: MySqlConnectionHelper, options: MigrationOptions):
        self.mysql = mysql
        self.options = options

    def build_query(self, table: TableDescriptor, order_by: Optional[List[str]] = None) -> str:
        """
        SELECT the table's columns in target order, one page at a time.

        Args:
            table: Target-side descriptor (authoritative column order)
            order_by: Source primary-key columns; InnoDB's natural order.
                Without them MySQL's unordered scan order is used.
        """
        columns = ', '.join(quote_mysql_identifier(c) for c in table.column_names)
        query = f"SELECT {columns} FROM {quote_mysql_identifier(table.name)}"
        if order_by:
            query += f" ORDER BY {', '.join(quote_mysql_identifier(c) for c in order_by)}"
        return query + " LIMIT %s OFFSET %s"

    def extract(
        self,
        table: TableDescriptor,
        page_size: Optional[int] = None,
        order_by: Optional[List[str]] = None,
    ) -> Iterator[Page]:
        """
        Lazily yield pages of tagged rows until the source returns an empty page.

        Forward-only: consuming the iterator drives the source; extracting
        again needs a new call.
        """
        page_size = page_size or self.options.page_size
        query = self.build_query(table, order_by)
        encoding = self.mysql.text_encoding()
        offset = 0

        while True:
            rows = self.mysql.get_raw_records(query, [page_size, offset])
            if not rows:
                break
            yield [tag_row(row, table.columns, encoding) for row in rows]
            offset += page_size


class InsertOutcome(NamedTuple):
    """Result of one insert (or commit) attempt."""
    ok: bool
    error: Optional[str] = None


INSERTED = InsertOutcome(True)


class LoaderState(str, Enum):
    """States of the per-row recovery cascade."""
    NORMAL = "normal"
    TAINTED_REPLAY = "tainted-replay"
    UTF8_REPAIR = "utf8-repair"
    ASCII_REPAIR = "ascii-repair"
    UNRECOVERABLE = "unrecoverable"


class BatchLoader:
    """
    Insert pages of rows into one target table.

    One page is one transaction. Rows successfully sent in the open
    transaction are kept in order as 'pending' so they can be replayed when
    a later row taints the transaction.
    """

    _statement_counter = 0

    def __init__(self, conn, table: TableDescriptor, options: MigrationOptions):
        """
        Args:
            conn: psycopg2 connection to the target (autocommit off)
            table: Target table descriptor
            options: Run options (dry_run, zero_date_placeholder, target_schema)
        """
        self.conn = conn
        self.table = table
        self.options = options
        self.result = TableResult(table=table.name)

        BatchLoader._statement_counter += 1
        self.statement_name = f"migrate_insert_{BatchLoader._statement_counter}"
        self._execute_sql = sql.SQL("EXECUTE {} ({})").format(
            sql.Identifier(self.statement_name),
            sql.SQL(", ").join(sql.Placeholder() for _ in table.columns),
        )
        self._pending: List[Row] = []
        self._prepared = False

        names = table.column_names
        self._pk_index = names.index(table.pk_column) if table.pk_column in names else 0

    # -- prepared statement ---------------------------------------------

    def prepare(self) -> None:
        """
        PREPARE the table's INSERT with one typed parameter per column.

        Committed right away so the page transactions never have to worry
        about it.
        """
        if self._prepared:
            return
        statement = sql.SQL("PREPARE {} ({}) AS INSERT INTO {} ({}) VALUES ({})").format(
            sql.Identifier(self.statement_name),
            sql.SQL(", ").join(sql.SQL(col.data_type) for col in self.table.columns),
            qualified_table(self.options.target_schema, self.table.name),
            sql.SQL(", ").join(sql.Identifier(col.name) for col in self.table.columns),
            sql.SQL(", ").join(sql.SQL(f"${i}") for i in range(1, len(self.table.columns) + 1)),
        )
        with target_transaction(self.conn, table=self.table.name, phase="prepare") as cursor:
            cursor.execute(statement)
        self._prepared = True

    def deallocate(self) -> None:
        if not self._prepared:
            return
        with target_transaction(self.conn, table=self.table.name, phase="deallocate") as cursor:
            cursor.execute(sql.SQL("DEALLOCATE {}").format(sql.Identifier(self.statement_name)))
        self._prepared = False

    # -- primitives returning outcomes ------------------------------------

    def _lost(self, error: Exception, phase: str) -> ConnectionFailure:
        return ConnectionFailure(f"Lost connection to PostgreSQL target: {error}", table=self.table.name, phase=phase)

    def _insert(self, cursor, row: Row) -> InsertOutcome:
        try:
            cursor.execute(self._execute_sql, row_params(row))
        except (psycopg2.Error, UnicodeError, ValueError) as e:
            if connection_lost(self.conn, e):
                raise self._lost(e, "insert") from e
            return InsertOutcome(False, str(e).strip())
        return INSERTED

    def _commit(self) -> InsertOutcome:
        """Commit the open transaction; in dry-run mode roll it back instead."""
        try:
            if self.options.dry_run:
                self.conn.rollback()
            else:
                self.conn.commit()
        except psycopg2.Error as e:
            if connection_lost(self.conn, e):
                raise self._lost(e, "commit") from e
            self._rollback()
            return InsertOutcome(False, str(e).strip())
        return INSERTED

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            raise self._lost(e, "rollback") from e

    def _control(self, cursor, statement: str) -> None:
        try:
            cursor.execute(statement)
        except psycopg2.Error as e:
            if connection_lost(self.conn, e):
                raise self._lost(e, "savepoint") from e
            raise

    # -- bookkeeping -------------------------------------------------------

    def pk_value(self, row: Row) -> Any:
        return row[self._pk_index].payload if row else None

    def _record_error(self, row: Row, stage: FailureStage, message: Optional[str]) -> None:
        pk = self.pk_value(row)
        self.result.errors.append(ErrorRecord(self.table.name, pk, stage, message or ""))
        logger.warning(f"{self.table.name}: row {self.table.pk_column}={pk!r} skipped ({stage.value}): {message}")

    def _record_repair(self, row: Row, stage: RepairStage) -> None:
        pk = self.pk_value(row)
        self.result.repairs.append(RepairRecord(self.table.name, pk, stage))
        self.result.rows_migrated += 1
        logger.info(f"{self.table.name}: row {self.table.pk_column}={pk!r} inserted after {stage.value}")

    # -- page loading ------------------------------------------------------

    def load_page(self, page: Page) -> int:
        """
        Insert one page inside a transaction, recovering from row failures.

        Args:
            page: Tagged rows in source order

        Returns:
            Number of rows from this page that were migrated
        """
        self.prepare()
        migrated_before = self.result.rows_migrated
        self._pending = []

        with self.conn.cursor() as cursor:
            for raw_row in page:
                self.result.rows_read += 1
                row = normalize_row(raw_row, self.table.columns, self.options.zero_date_placeholder)
                outcome = self._insert(cursor, row)
                if outcome.ok:
                    self._pending.append(row)
                else:
                    self._recover(cursor, row, outcome)

            self._resolve_pending(cursor)

        self.result.pages += 1
        return self.result.rows_migrated - migrated_before

    def _resolve_pending(self, cursor) -> None:
        """Commit the page's pending rows, replaying them one by one if the commit fails."""
        rows = self._pending
        outcome = self._commit()
        if outcome.ok:
            self.result.rows_migrated += len(rows)
            self._pending = []
            return
        logger.warning(f"{self.table.name}: commit failed ({outcome.error}), replaying {len(rows)} rows")
        self._replay_pending(cursor)

    def _replay_pending(self, cursor) -> None:
        """
        Re-send pending rows individually in a fresh transaction.

        Each replay runs under a savepoint so one bad row doesn't taint the
        others. Order is preserved.
        """
        rows, self._pending = self._pending, []
        if not rows:
            return

        replayed = []
        for row in rows:
            self._control(cursor, "SAVEPOINT replay_row")
            outcome = self._insert(cursor, row)
            if outcome.ok:
                self._control(cursor, "RELEASE SAVEPOINT replay_row")
                replayed.append(row)
            else:
                self._control(cursor, "ROLLBACK TO SAVEPOINT replay_row")
                self._record_error(row, FailureStage.INSERT_REJECTED, outcome.error)

        outcome = self._commit()
        if outcome.ok:
            self.result.rows_migrated += len(replayed)
            return
        for row in replayed:
            self._record_error(row, FailureStage.INSERT_REJECTED, outcome.error)

    def _attempt_isolated(self, cursor, row: Row) -> InsertOutcome:
        """Try one row in its own short transaction."""
        outcome = self._insert(cursor, row)
        if not outcome.ok:
            self._rollback()
            return outcome
        return self._commit()

    def _recover(self, cursor, row: Row, failure: InsertOutcome) -> None:
        """
        Run the recovery cascade for a row whose insert just failed.

        NORMAL -> TAINTED_REPLAY -> UTF8_REPAIR -> ASCII_REPAIR -> UNRECOVERABLE,
        each transition driven by a failed outcome. Ends with the loader
        back in NORMAL and no transaction open.
        """
        state = LoaderState.TAINTED_REPLAY
        final_stage = FailureStage.UTF8_REPAIR_FAILED
        logger.debug(f"{self.table.name}: insert of {self.pk_value(row)!r} failed: {failure.error}")

        while state != LoaderState.NORMAL:
            if state == LoaderState.TAINTED_REPLAY:
                self._rollback()
                self._replay_pending(cursor)
                state = LoaderState.UTF8_REPAIR

            elif state == LoaderState.UTF8_REPAIR:
                outcome = self._attempt_isolated(cursor, repair_utf8(row))
                if outcome.ok:
                    self._record_repair(row, RepairStage.UTF8_REPAIRED)
                    state = LoaderState.NORMAL
                else:
                    failure = outcome
                    # Transliteration can't change a row without text
                    state = LoaderState.ASCII_REPAIR if has_text(row) else LoaderState.UNRECOVERABLE

            elif state == LoaderState.ASCII_REPAIR:
                final_stage = FailureStage.ASCII_REPAIR_FAILED
                outcome = self._attempt_isolated(cursor, transliterate_ascii(row))
                if outcome.ok:
                    self._record_repair(row, RepairStage.ASCII_REPAIRED)
                    state = LoaderState.NORMAL
                else:
                    failure = outcome
                    state = LoaderState.UNRECOVERABLE

            else:
                self._record_error(row, final_stage, failure.error)
                state = LoaderState.NORMAL

    # -- table level -------------------------------------------------------

    def reset_sequence(self) -> Optional[int]:
        """
        Move the primary key's sequence past the loaded keys.

        Inserting explicit key values bypasses nextval(), so the sequence has
        to be set to MAX(pk). setval() is not transactional, so this is
        skipped in dry-run mode.

        Returns:
            New sequence value, or None when there is nothing to reset
        """
        if self.options.dry_run or len(self.table.primary_key) != 1:
            return None

        pk_column = self.table.primary_key[0]
        schema_name = self.options.target_schema.replace('"', '""')
        table_name = self.table.name.replace('"', '""')
        query = sql.SQL(
            "SELECT setval(pg_get_serial_sequence(%s, %s), COALESCE(MAX({pk}), 1), MAX({pk}) IS NOT NULL) FROM {table}"
        ).format(pk=sql.Identifier(pk_column), table=qualified_table(self.options.target_schema, self.table.name))

        with target_transaction(self.conn, table=self.table.name, phase="sequence-reset") as cursor:
            cursor.execute(query, (f'"{schema_name}"."{table_name}"', pk_column))
            row = cursor.fetchone()

        value = row[0] if row else None
        if value is not None:
            logger.info(f"Reset sequence for {self.table.name}.{pk_column} to {value}")
        return value


class DataTransfer:
    """Transfer whole tables from the MySQL source into the PostgreSQL target."""

    def __init__(self, mysql: MySqlConnectionHelper, postgres_conn, options: MigrationOptions):
        """
        Initialize the data transfer handler.

        Args:
            mysql: Source connection helper (read-only)
            postgres_conn: Target psycopg2 connection (read-write)
            options: Run options
        """
        self.mysql = mysql
        self.postgres_conn = postgres_conn
        self.options = options
        self.extractor = PagedExtractor(mysql, options)

    def _truncate_table(self, table_name: str) -> None:
        query = sql.SQL("TRUNCATE TABLE {} CASCADE").format(
            qualified_table(self.options.target_schema, table_name)
        )
        with target_transaction(self.postgres_conn, table=table_name, phase="truncate") as cursor:
            cursor.execute(query)
        logger.info(f"Truncated target table {self.options.target_schema}.{table_name}")

    def transfer_table(self, table: TableDescriptor, order_by: Optional[List[str]] = None) -> TableResult:
        """
        Copy every row of a table, page by page.

        Args:
            table: Target table descriptor
            order_by: Source primary-key columns for a stable scan order

        Returns:
            TableResult with counts, timing and per-row error records
        """
        start_time = time.time()
        logger.info(f"Starting transfer: {table.name} ({len(table.columns)} columns)")

        if self.options.truncate_target and not self.options.dry_run:
            self._truncate_table(table.name)

        loader = BatchLoader(self.postgres_conn, table, self.options)
        try:
            for page in self.extractor.extract(table, self.options.page_size, order_by):
                page_start = time.time()
                migrated = loader.load_page(page)

                if self.options.show_progress:
                    page_time = time.time() - page_start
                    rows_per_second = migrated / page_time if page_time > 0 else 0
                    logger.info(
                        f"Page {loader.result.pages}: Transferred {migrated:,} rows "
                        f"({loader.result.rows_migrated:,} total) "
                        f"at {rows_per_second:,.0f} rows/sec"
                    )

            loader.reset_sequence()
        finally:
            if not self.postgres_conn.closed:
                loader.deallocate()

        result = loader.result
        result.elapsed_seconds = time.time() - start_time
        return result
