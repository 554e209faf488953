"""
Live schema access for the reconciler.

SchemaBackend is the seam between the reconciler (which decides what to
change) and the database (which is inspected and altered). The SQLite
implementation reads declared column types back through PRAGMA table_info,
so the types written by ddl.py round-trip exactly.

Invariants:
    - get_columns() always reads the live schema; nothing is cached
    - type_change_statements() keeps every existing column and row, including
      columns no declaration mentions, and never drops a table: the old table
      is renamed to a backup that an operator removes by hand
    - Statements passed to execute() run in one transaction

How to change safely:
    - A new backend must report types in the information-schema vocabulary
      used by ColumnKind
    - Test table rebuilds against tables referenced by other tables
    - Renames during a rebuild must not rewrite other tables' REFERENCES
      clauses (legacy_alter_table with foreign keys off)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..schema.physical import ColumnInfo, ColumnType
from ..store.database import Database
from .ddl import quote

logger = logging.getLogger(__name__)

_ON_DELETE_ACTIONS = {"SET NULL", "SET DEFAULT", "CASCADE", "RESTRICT", "NO ACTION"}

BACKUP_SUFFIX = "__pre_rebuild"


@dataclass(frozen=True)
class TableRebuild:
    """Statements converting column types, and the table the old rows are kept in."""

    statements: list[str]
    backup_table: str


@runtime_checkable
class SchemaBackend(Protocol):
    """Inspect and alter a live relational schema."""

    def table_exists(self, table: str) -> bool:
        ...

    def get_columns(self, table: str) -> dict[str, ColumnInfo]:
        ...

    def execute(self, statements: list[str]) -> None:
        ...

    def type_change_statements(self, table: str, changes: dict[str, ColumnType]) -> TableRebuild:
        """Statements converting ``changes`` columns to their new types."""
        ...


class SqliteSchemaBackend:
    """SchemaBackend over a SQLite database.

    SQLite cannot change a column's type in place, so safe type changes
    rebuild the table: rename the old table to a backup, create the table
    again with the converted column types and copy every row across (CAST is
    the explicit conversion). The backup is left in place.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def table_exists(self, table: str) -> bool:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
                (table,),
            ).fetchone()
        return row is not None

    def get_columns(self, table: str) -> dict[str, ColumnInfo]:
        with self.database.connect() as conn:
            rows = conn.execute(f"PRAGMA table_info({quote(table, 'table name')})").fetchall()

        return {
            row["name"]: ColumnInfo.from_declared(
                row["name"],
                row["type"] or "",
                not_null=bool(row["notnull"]),
                default=row["dflt_value"],
                primary_key=bool(row["pk"]),
            )
            for row in rows
        }

    def execute(self, statements: list[str]) -> None:
        if not statements:
            return
        # Rebuilds rename tables that other tables may reference.
        with self.database.transaction(foreign_keys=False, legacy_alter_table=True) as conn:
            for statement in statements:
                logger.debug("Executing DDL", extra={"statement": statement})
                conn.execute(statement)

    def type_change_statements(self, table: str, changes: dict[str, ColumnType]) -> TableRebuild:
        """Build the table rebuild for ``changes``.

        Args:
            table: Table to rebuild
            changes: Column name -> new physical type

        Returns:
            TableRebuild with ordered statements (rename to backup, create,
            copy rows) and the backup table name
        """
        columns = self.get_columns(table)
        references = self._foreign_keys(table)
        backup = self._backup_name(table)

        definitions = []
        select_exprs = []
        for name, info in columns.items():
            new_type = changes.get(name)
            declared = new_type.sql if new_type else info.declared_type
            parts = [quote(name, "column name"), declared]
            if info.primary_key:
                parts.append("PRIMARY KEY")
            if info.not_null:
                parts.append("NOT NULL")
            if info.default is not None:
                parts.append(f"DEFAULT {info.default}")
            if name in references:
                target, on_delete = references[name]
                parts.append(f"REFERENCES {quote(target, 'table name')}(\"id\") ON DELETE {on_delete}")
            definitions.append(" ".join(parts))
            column = quote(name, "column name")
            select_exprs.append(f"CAST({column} AS {new_type.sql})" if new_type else column)

        column_list = ", ".join(quote(name, "column name") for name in columns)
        body = ",\n  ".join(definitions)
        statements = [
            f"ALTER TABLE {quote(table, 'table name')} RENAME TO {quote(backup, 'table name')}",
            f"CREATE TABLE {quote(table, 'table name')} (\n  {body}\n)",
            f"INSERT INTO {quote(table, 'table name')} ({column_list}) "
            f"SELECT {', '.join(select_exprs)} FROM {quote(backup, 'table name')}",
        ]
        return TableRebuild(statements=statements, backup_table=backup)

    def _backup_name(self, table: str) -> str:
        backup = f"{table}{BACKUP_SUFFIX}"
        suffix = 2
        while self.table_exists(backup):
            backup = f"{table}{BACKUP_SUFFIX}_{suffix}"
            suffix += 1
        return backup

    def _foreign_keys(self, table: str) -> dict[str, tuple[str, str]]:
        with self.database.connect() as conn:
            rows = conn.execute(f"PRAGMA foreign_key_list({quote(table, 'table name')})").fetchall()
        return {
            row["from"]: (
                row["table"],
                row["on_delete"] if row["on_delete"] in _ON_DELETE_ACTIONS else "NO ACTION",
            )
            for row in rows
        }
