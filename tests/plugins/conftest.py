"""
Shared fakes for the migration tests.

FakeTargetConnection mimics the parts of a psycopg2 connection the migration
uses: prepared INSERTs, transactions that abort on the first error,
savepoints, and the catalog queries. FakeMySql answers the source-side
queries from in-memory tables.
"""

from collections import defaultdict
import re

import pytest
import psycopg2
from psycopg2 import sql


def render(query) -> str:
    """Render a psycopg2.sql composition without a live connection."""
    if isinstance(query, str):
        return query
    if isinstance(query, sql.Composed):
        return "".join(render(part) for part in query.seq)
    if isinstance(query, sql.SQL):
        return query.string
    if isinstance(query, sql.Identifier):
        return ".".join(f'"{s}"' for s in query.strings)
    if isinstance(query, sql.Placeholder):
        return "%s"
    return str(query)


def index_row(table, name, unique, cols, definition=None):
    """pg_index query row; the definition defaults to what pg_get_indexdef prints for a plain btree index."""
    if definition is None:
        definition = (
            f"CREATE {'UNIQUE ' if unique else ''}INDEX {name} ON public.{table} USING btree ({', '.join(cols)})"
        )
    return (name, unique, list(cols), definition)


PREPARE_RE = re.compile(r'PREPARE "([^"]+)" .* INSERT INTO "[^"]+"\."([^"]+)"')
EXECUTE_RE = re.compile(r'EXECUTE "([^"]+)"')
QUALIFIED_RE = re.compile(r'"[^"]+"\."([^"]+)"')


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self._result = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, query, parameters=None):
        self._result = self.conn.handle(render(query), parameters)

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result or [])


class FakeTargetConnection:
    """
    In-memory PostgreSQL stand-in.

    Args:
        tables: {table: [(column, type), ...]} target catalog
        primary_keys: {table: [columns]}; defaults to 'id' when present
        indexes: {table: [(index_name, is_unique, [columns], definition)]}; the
            definition may be left off
        reject: Callable(table, params) -> error message or None; may raise
        fail_commits: Number of non-empty commits that fail with a deferred constraint error
        version: Reported server version string
    """

    def __init__(self, tables=None, primary_keys=None, indexes=None, reject=None, fail_commits=0,
                 version="PostgreSQL 16.2 on x86_64-pc-linux-gnu, compiled by gcc"):
        self.closed = 0
        self.autocommit = False
        self.tables = tables or {}
        self.primary_keys = primary_keys or {
            t: ["id"] for t, cols in self.tables.items() if any(c == "id" for c, _ in cols)
        }
        self.indexes = {t: list(ix) for t, ix in (indexes or {}).items()}
        self.reject = reject or (lambda table, params: None)
        self.fail_commits = fail_commits
        self.version = version

        self.data = defaultdict(list)
        self.prepared = {}
        self.pending = []
        self.aborted = False
        self.savepoint = None
        self.statements = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def handle(self, text, parameters):
        self.statements.append(text)

        if text.startswith("EXECUTE"):
            if self.aborted:
                raise psycopg2.InternalError("current transaction is aborted")
            table = self.prepared[EXECUTE_RE.match(text).group(1)]
            params = tuple(parameters)
            # psycopg2 encodes str parameters client-side; lone surrogates fail before reaching the server
            for p in params:
                if isinstance(p, str):
                    p.encode("utf-8")
            message = self.reject(table, params)
            if message:
                self.aborted = True
                raise psycopg2.DataError(message)
            self.pending.append((table, params))
            return None
        if text.startswith("PREPARE"):
            name, table = PREPARE_RE.match(text).groups()
            self.prepared[name] = table
            return None
        if text.startswith("DEALLOCATE"):
            self.prepared.pop(text.split('"')[1], None)
            return None
        if text == "SAVEPOINT replay_row":
            self.savepoint = len(self.pending)
            return None
        if text == "ROLLBACK TO SAVEPOINT replay_row":
            del self.pending[self.savepoint:]
            self.aborted = False
            return None
        if text.startswith("RELEASE SAVEPOINT"):
            return None
        if "setval" in text:
            table = QUALIFIED_RE.search(text).group(1)
            keys = [row[0] for row in self.data[table]]
            return [(max(keys) if keys else 1,)]
        if text.startswith("TRUNCATE"):
            self.data[QUALIFIED_RE.search(text).group(1)] = []
            return None
        if text.startswith("DROP INDEX"):
            name = text.split('"')[-2]
            for table, indexes in self.indexes.items():
                self.indexes[table] = [ix for ix in indexes if ix[0] != name]
            return None
        if "pg_index" in text:
            table = parameters[1]
            return [index_row(table, *ix) for ix in self.indexes.get(table, [])]
        if "pg_attribute" in text:
            return [(c, t, i) for i, (c, t) in enumerate(self.tables.get(parameters[1], []), start=1)]
        if "table_constraints" in text:
            return [(c,) for c in self.primary_keys.get(parameters[1], [])]
        if "information_schema.tables" in text:
            return [(t,) for t in sorted(self.tables)]
        if "COUNT(*)" in text:
            return [(len(self.data[QUALIFIED_RE.search(text).group(1)]),)]
        if "version()" in text:
            return [(self.version,)]
        return None

    def committed(self, table):
        return list(self.data[table])

    def commit(self):
        if self.fail_commits and self.pending:
            self.fail_commits -= 1
            self.pending = []
            self.aborted = False
            raise psycopg2.IntegrityError("deferred constraint violated")
        if not self.aborted:
            for table, params in self.pending:
                self.data[table].append(params)
        self.pending = []
        self.aborted = False
        self.commits += 1

    def rollback(self):
        self.pending = []
        self.aborted = False
        self.rollbacks += 1

    def close(self):
        self.closed = 1


class FakeMySql:
    """
    Source stand-in exposing MySqlConnectionHelper's query surface.

    Args:
        tables: {table: (columns, rows)}
        primary_keys: {table: [columns]}; defaults to 'id' when present
        version, version_comment: What VERSION() and @@version_comment report
    """

    def __init__(self, tables=None, primary_keys=None, version="8.0.36",
                 version_comment="MySQL Community Server - GPL"):
        self.tables = tables or {}
        self.primary_keys = primary_keys or {
            t: ["id"] for t, (cols, _) in self.tables.items() if "id" in cols
        }
        self.version = version
        self.version_comment = version_comment
        self.queries = []
        self.closed = False

    def get_records(self, query, parameters=None):
        self.queries.append((query, parameters))
        if "@@version_comment" in query:
            return [(self.version_comment,)]
        if "VERSION()" in query:
            return [(self.version,)]
        if "information_schema.tables" in query:
            return [(t,) for t in sorted(self.tables)]
        if "key_column_usage" in query:
            return [(c,) for c in self.primary_keys.get(parameters[0], [])]
        if "information_schema.columns" in query:
            return [(c,) for c in self.tables[parameters[0]][0]]
        table = re.search(r"FROM `([^`]+)`", query).group(1)
        rows = self.tables[table][1]
        if "COUNT(*)" in query:
            return [(len(rows),)]
        page_size, offset = parameters
        return [tuple(r) for r in rows[offset:offset + page_size]]

    def get_raw_records(self, query, parameters=None):
        return self.get_records(query, parameters)

    def text_encoding(self):
        return "utf-8"

    def get_first(self, query, parameters=None):
        rows = self.get_records(query, parameters)
        return rows[0] if rows else None

    def page_queries(self):
        return [q for q in self.queries if "LIMIT" in q[0]]

    def close(self):
        self.closed = True


@pytest.fixture
def render_sql():
    return render


@pytest.fixture
def fake_target():
    """Factory for FakeTargetConnection."""
    return FakeTargetConnection


@pytest.fixture
def fake_mysql():
    """Factory for FakeMySql."""
    return FakeMySql
