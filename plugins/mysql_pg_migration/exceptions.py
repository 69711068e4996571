"""
Migration error taxonomy.

Only fatal conditions are exceptions. Row-level insert failures are plain
values handled inside the batch loader and never raised.
"""

from typing import Dict, List, Optional


class MigrationError(Exception):
    """Base class for errors that abort the whole migration."""


class EngineMismatch(MigrationError):
    """Source or target is not the database engine this tool migrates between."""

    def __init__(self, side: str, expected: str, version: str):
        self.side = side
        self.expected = expected
        self.version = version
        super().__init__(f"{side} database must be {expected}, got: {version!r}")


class SchemaMismatch(MigrationError):
    """Table or column sets differ between source and target."""

    def __init__(
        self,
        source_only_tables: Optional[List[str]] = None,
        target_only_tables: Optional[List[str]] = None,
        column_differences: Optional[Dict[str, Dict[str, List[str]]]] = None,
    ):
        self.source_only_tables = sorted(source_only_tables or [])
        self.target_only_tables = sorted(target_only_tables or [])
        self.column_differences = column_differences or {}
        super().__init__(self._describe())

    def _describe(self) -> str:
        lines = ["Source and target schemas do not match:"]
        if self.source_only_tables:
            lines.append(f"  tables only in source: {', '.join(self.source_only_tables)}")
        if self.target_only_tables:
            lines.append(f"  tables only in target: {', '.join(self.target_only_tables)}")
        for table in sorted(self.column_differences):
            diff = self.column_differences[table]
            if diff.get("source_only"):
                lines.append(f"  {table}: columns only in source: {', '.join(diff['source_only'])}")
            if diff.get("target_only"):
                lines.append(f"  {table}: columns only in target: {', '.join(diff['target_only'])}")
        return "\n".join(lines)


class ConnectionFailure(MigrationError):
    """Lost or refused connection to either database."""

    def __init__(self, message: str, table: Optional[str] = None, phase: Optional[str] = None):
        self.table = table
        self.phase = phase
        context = []
        if table:
            context.append(f"table={table}")
        if phase:
            context.append(f"phase={phase}")
        suffix = f" ({', '.join(context)})" if context else ""
        super().__init__(f"{message}{suffix}")
