"""
Tests for Schema Inspection Module

These tests validate catalog reads on both sides, the engine check and the
schema conformance gate.
"""

import pytest
from unittest.mock import Mock

from mysql_pg_migration.exceptions import EngineMismatch, SchemaMismatch
from mysql_pg_migration.models import ColumnDescriptor
from mysql_pg_migration.schema_inspector import (
    SourceSchema,
    TargetSchema,
    check_conformance,
    check_engines,
    collect_columns,
)


class TestCheckConformance:
    """Test the table/column presence gate."""

    def test_identical_schemas_pass(self):
        columns = {"users": {"id", "name"}, "orders": {"id", "user_id"}}

        check_conformance(columns, {t: set(c) for t, c in columns.items()})

    def test_column_order_and_types_are_ignored(self):
        check_conformance({"users": {"name", "id"}}, {"users": {"id", "name"}})

    def test_table_only_in_source(self):
        with pytest.raises(SchemaMismatch) as exc_info:
            check_conformance({"users": {"id"}, "audit": {"id"}}, {"users": {"id"}})

        assert exc_info.value.source_only_tables == ["audit"]
        assert exc_info.value.target_only_tables == []
        assert "tables only in source: audit" in str(exc_info.value)

    def test_table_only_in_target(self):
        with pytest.raises(SchemaMismatch) as exc_info:
            check_conformance({"users": {"id"}}, {"users": {"id"}, "sessions": {"id"}})

        assert exc_info.value.target_only_tables == ["sessions"]

    def test_column_differences_listed_per_table(self):
        with pytest.raises(SchemaMismatch) as exc_info:
            check_conformance(
                {"users": {"id", "name", "legacy_flag"}},
                {"users": {"id", "name", "created_at"}},
            )

        assert exc_info.value.column_differences == {
            "users": {"source_only": ["legacy_flag"], "target_only": ["created_at"]},
        }
        message = str(exc_info.value)
        assert "users: columns only in source: legacy_flag" in message
        assert "users: columns only in target: created_at" in message


class TestCheckEngines:
    """Test the engine pre-flight check."""

    def _schemas(self, source_version, target_version, version_comment="MySQL Community Server - GPL"):
        source = Mock()
        source.version.return_value = source_version
        source.version_comment.return_value = version_comment
        target = Mock()
        target.version.return_value = target_version
        return source, target

    @pytest.mark.parametrize("source_version", ["8.0.36", "5.7.44-log", "10.11.6-MariaDB"])
    def test_mysql_and_postgres_accepted(self, source_version):
        source, target = self._schemas(source_version, "PostgreSQL 16.2 on x86_64-pc-linux-gnu")

        assert check_engines(source, target) == (source_version, "PostgreSQL 16.2 on x86_64-pc-linux-gnu")

    def test_non_postgres_target_rejected(self):
        source, target = self._schemas("8.0.36", "Microsoft SQL Server 2022")

        with pytest.raises(EngineMismatch) as exc_info:
            check_engines(source, target)

        assert exc_info.value.side == "target"

    def test_non_mysql_source_rejected(self):
        source, target = self._schemas("PostgreSQL 15.1", "PostgreSQL 16.2")

        with pytest.raises(EngineMismatch) as exc_info:
            check_engines(source, target)

        assert exc_info.value.side == "source"
        target.version.assert_not_called()

    @pytest.mark.parametrize("source_version, version_comment", [
        ("8.0.11-TiDB-v7.5.0", "MySQL Community Server (Apache License 2.0)"),
        ("8.0.30-Vitess", "Version: 19.0.4 (Git revision 7a2c1e8 branch 'HEAD')"),
        ("8.0.0", "SingleStoreDB source distribution (compatible; MySQL Enterprise & MySQL Commercial)"),
    ])
    def test_mysql_protocol_impostors_rejected(self, source_version, version_comment):
        source, target = self._schemas(source_version, "PostgreSQL 16.2", version_comment)

        with pytest.raises(EngineMismatch) as exc_info:
            check_engines(source, target)

        assert exc_info.value.side == "source"
        target.version.assert_not_called()

    def test_managed_mysql_accepted(self):
        # RDS and Aurora report a plain version with a generic comment
        source, target = self._schemas("8.0.35", "PostgreSQL 16.2", "Source distribution")

        assert check_engines(source, target) == ("8.0.35", "PostgreSQL 16.2")


class TestSourceSchema:
    """Test MySQL catalog reads."""

    def test_tables_columns_and_primary_key(self, fake_mysql):
        mysql = fake_mysql({"users": (["id", "name"], [(1, "a"), (2, "b")]), "orders": (["id"], [])})
        source = SourceSchema(mysql)

        assert source.version() == "8.0.36"
        assert source.version_comment() == "MySQL Community Server - GPL"
        assert source.get_tables() == ["orders", "users"]
        assert source.get_columns("users") == ["id", "name"]
        assert source.get_primary_key("users") == ["id"]
        assert source.get_row_count("users") == 2

    def test_row_count_quotes_identifier(self):
        mysql = Mock()
        mysql.get_first.return_value = (None,)

        assert SourceSchema(mysql).get_row_count("order`s") == 0
        mysql.get_first.assert_called_once_with("SELECT COUNT(*) FROM `order``s`")


class TestTargetSchema:
    """Test PostgreSQL catalog reads."""

    @pytest.fixture
    def conn(self, fake_target):
        return fake_target(tables={
            "users": [("id", "integer"), ("email", "character varying(255)"), ("last_login", "timestamp without time zone")],
        })

    def test_describe_table(self, conn):
        table = TargetSchema(conn).describe_table("users")

        assert table.name == "users"
        assert table.column_names == ["id", "email", "last_login"]
        assert table.columns[2] == ColumnDescriptor("last_login", "timestamp without time zone", 3)
        assert table.primary_key == ("id",)

    def test_reads_leave_no_transaction_open(self, conn):
        target = TargetSchema(conn)

        target.get_tables()
        target.version()

        assert conn.rollbacks == 2
        assert conn.commits == 0

    def test_row_count(self, conn):
        conn.data["users"] = [(1, "a", None), (2, "b", None)]

        assert TargetSchema(conn).get_row_count("users") == 2

    def test_collect_columns_from_both_sides(self, conn, fake_mysql):
        mysql = fake_mysql({"users": (["id", "email", "last_login"], [])})

        source_columns = collect_columns(SourceSchema(mysql), ["users"])
        target_columns = collect_columns(TargetSchema(conn), ["users"])

        assert source_columns == target_columns == {"users": {"id", "email", "last_login"}}
