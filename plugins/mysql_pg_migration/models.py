"""
Migration Data Model

Descriptors captured from the target schema, the resolved run options, and
the per-row / per-table outcome records that make up a migration report.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, NamedTuple, Optional, Tuple
from enum import Enum
import os

# Tables owned by the schema-migration tool rather than the application
SCHEMA_BOOKKEEPING_TABLES = frozenset({"schema_migrations", "ar_internal_metadata"})

DEFAULT_PAGE_SIZE = int(os.environ.get("MIGRATION_PAGE_SIZE", "10000"))
DEFAULT_ZERO_DATE_PLACEHOLDER = "1970-01-01 00:00:00"


class ValueKind(str, Enum):
    """Explicit tag carried by every extracted value."""
    TEXT = "text"
    TEMPORAL = "temporal"
    NUMERIC = "numeric"
    NULL = "null"
    BINARY = "binary"


class TaggedValue(NamedTuple):
    """A raw source value paired with the kind of its target column."""
    kind: ValueKind
    payload: Any


Row = Tuple[TaggedValue, ...]
Page = List[Row]


class FailureStage(str, Enum):
    """Stage at which a row was given up on."""
    INSERT_REJECTED = "insert-rejected"
    UTF8_REPAIR_FAILED = "utf8-repair-failed"
    ASCII_REPAIR_FAILED = "ascii-repair-failed"


class RepairStage(str, Enum):
    """Repair that got a row committed (informational, not an error)."""
    UTF8_REPAIRED = "utf8-repaired"
    ASCII_REPAIRED = "ascii-repaired"


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    data_type: str
    ordinal: int


@dataclass(frozen=True)
class TableDescriptor:
    """A target table, its columns in ordinal order and its primary key."""
    name: str
    columns: Tuple[ColumnDescriptor, ...]
    primary_key: Tuple[str, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    @property
    def pk_column(self) -> str:
        """
        Column used to identify rows in error records.

        Falls back to an 'id' column, then the first column, when the table
        has no declared primary key.
        """
        if self.primary_key:
            return self.primary_key[0]
        for col in self.columns:
            if col.name.lower() == "id":
                return col.name
        return self.columns[0].name if self.columns else "id"


@dataclass(frozen=True)
class IndexDescriptor:
    name: str
    table: str
    columns: Tuple[str, ...]
    is_unique: bool = False
    # pg_get_indexdef output; empty when only the key columns are known
    definition: str = ""


@dataclass(frozen=True)
class MigrationOptions:
    """
    Resolved configuration for one migration run.

    Built once (usually from DAG params) and handed to every component that
    needs it. Nothing reads configuration from module globals.
    """
    source_conn_id: str = "mysql_source"
    target_conn_id: str = "postgres_target"
    target_schema: str = "public"
    drop_triggers: bool = False
    drop_indexes: bool = False
    skip_schema: bool = False
    skip_migration_step: bool = False
    dry_run: bool = False
    table_allowlist: FrozenSet[str] = frozenset()
    table_denylist: FrozenSet[str] = frozenset()
    page_size: int = DEFAULT_PAGE_SIZE
    show_progress: bool = False
    zero_date_placeholder: str = DEFAULT_ZERO_DATE_PLACEHOLDER
    schema_file: Optional[str] = None
    migration_files: Tuple[str, ...] = ()
    truncate_target: bool = True
    validate_counts: bool = True

    def __post_init__(self):
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}")

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "MigrationOptions":
        """
        Build options from Airflow DAG params.

        Args:
            params: DAG run params (missing keys fall back to defaults)

        Returns:
            Immutable MigrationOptions
        """
        return cls(
            source_conn_id=params.get("source_conn_id", cls.source_conn_id),
            target_conn_id=params.get("target_conn_id", cls.target_conn_id),
            target_schema=params.get("target_schema", cls.target_schema),
            drop_triggers=bool(params.get("drop_triggers", False)),
            drop_indexes=bool(params.get("drop_indexes", False)),
            skip_schema=bool(params.get("skip_schema", False)),
            skip_migration_step=bool(params.get("skip_migration_step", False)),
            dry_run=bool(params.get("dry_run", False)),
            table_allowlist=frozenset(params.get("include_tables") or []),
            table_denylist=frozenset(params.get("exclude_tables") or []),
            page_size=int(params.get("page_size") or DEFAULT_PAGE_SIZE),
            show_progress=bool(params.get("show_progress", False)),
            zero_date_placeholder=params.get("zero_date_placeholder") or DEFAULT_ZERO_DATE_PLACEHOLDER,
            schema_file=params.get("schema_file") or None,
            migration_files=tuple(params.get("migration_files") or ()),
            truncate_target=bool(params.get("truncate_target", True)),
            validate_counts=bool(params.get("validate_counts", True)),
        )

    def selects_table(self, table_name: str) -> bool:
        """Apply the allow/deny lists and skip schema bookkeeping tables."""
        if table_name in SCHEMA_BOOKKEEPING_TABLES:
            return False
        if self.table_allowlist and table_name not in self.table_allowlist:
            return False
        return table_name not in self.table_denylist


@dataclass
class ErrorRecord:
    table: str
    pk_value: Any
    stage: FailureStage
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "pk_value": self.pk_value,
            "stage": self.stage.value,
            "message": self.message,
        }


@dataclass
class RepairRecord:
    table: str
    pk_value: Any
    stage: RepairStage


@dataclass
class RowCountMismatch:
    table: str
    source_count: int
    target_count: int

    @property
    def difference(self) -> int:
        return abs(self.source_count - self.target_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "source_count": self.source_count,
            "target_count": self.target_count,
            "difference": self.difference,
        }


@dataclass
class TableResult:
    """Outcome of loading one table."""
    table: str
    rows_read: int = 0
    rows_migrated: int = 0
    pages: int = 0
    elapsed_seconds: float = 0.0
    errors: List[ErrorRecord] = field(default_factory=list)
    repairs: List[RepairRecord] = field(default_factory=list)

    @property
    def rows_failed(self) -> int:
        return len(self.errors)

    @property
    def rows_per_second(self) -> float:
        return self.rows_migrated / self.elapsed_seconds if self.elapsed_seconds > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "rows_read": self.rows_read,
            "rows_migrated": self.rows_migrated,
            "rows_failed": self.rows_failed,
            "pages": self.pages,
            "elapsed_time_seconds": self.elapsed_seconds,
            "avg_rows_per_second": self.rows_per_second,
            "errors": [e.to_dict() for e in self.errors],
            "repaired_ids": {
                stage.value: [r.pk_value for r in self.repairs if r.stage == stage]
                for stage in RepairStage
            },
        }


@dataclass
class MigrationReport:
    """Aggregate counters for a run, built incrementally by the orchestrator."""
    dry_run: bool = False
    tables: List[TableResult] = field(default_factory=list)
    mismatches: List[RowCountMismatch] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def add(self, result: TableResult) -> None:
        self.tables.append(result)

    @property
    def rows_migrated(self) -> int:
        return sum(t.rows_migrated for t in self.tables)

    @property
    def rows_failed(self) -> int:
        return sum(t.rows_failed for t in self.tables)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "rows_migrated": self.rows_migrated,
            "rows_failed": self.rows_failed,
            "elapsed_time_seconds": self.elapsed_seconds,
            "tables": [t.to_dict() for t in self.tables],
            "mismatches": [m.to_dict() for m in self.mismatches],
        }
