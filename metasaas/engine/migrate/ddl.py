"""
DDL rendering for the schema reconciler.

Every identifier is validated and every default literal is type-checked
here, before it is interpolated into a statement. Nothing else in the
package builds DDL text.

Invariants:
    - Identifiers match ^[a-z][a-z0-9_]*$ (max 63 chars) or rendering fails
    - Default literals are checked against the column kind; string literals
      have single quotes doubled
    - NOW() is the only non-literal default and is rendered as CURRENT_TIMESTAMP

How to change safely:
    - New column kinds need a branch in render_default()
    - Never accept a raw SQL fragment from a declaration
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any

from ..schema.physical import ColumnKind, ColumnSpec, ColumnType, TableSpec

_IDENTIFIER_RE = re.compile(r"^[a-z][a-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 63
NOW = "NOW()"


class UnsafeIdentifierError(ValueError):
    """A table or column name failed identifier validation."""

    pass


class InvalidDefaultError(ValueError):
    """A declared default does not fit its column type."""

    pass


def validate_identifier(name: str, context: str = "identifier") -> str:
    """Check a table/column name before it is used in a statement.

    Args:
        name: The identifier
        context: What the identifier names, used in the error message

    Returns:
        The identifier, unchanged

    Raises:
        UnsafeIdentifierError: If the name is not lowercase snake_case
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name) or len(name) > MAX_IDENTIFIER_LENGTH:
        raise UnsafeIdentifierError(
            f'Invalid {context}: "{name}". Identifiers must start with a lowercase letter '
            "and contain only lowercase letters, numbers, and underscores."
        )
    return name


def quote(name: str, context: str = "identifier") -> str:
    return f'"{validate_identifier(name, context)}"'


def escape_literal(value: str) -> str:
    if "\x00" in value:
        raise InvalidDefaultError("Default values cannot contain NUL characters")
    return "'" + value.replace("'", "''") + "'"


def is_now(value: Any) -> bool:
    return isinstance(value, str) and value.strip().upper() == NOW


def render_default(value: Any, column_type: ColumnType, column: str = "") -> str:
    """Render a default literal for a column of the given type.

    Args:
        value: Declared default value
        column_type: Physical type of the column
        column: Column name, for error messages

    Returns:
        SQL literal (without the DEFAULT keyword)

    Raises:
        InvalidDefaultError: If the value does not fit the type
    """
    kind = column_type.kind

    if kind == ColumnKind.BOOLEAN:
        if value is True or value == "true":
            return "TRUE"
        if value is False or value == "false":
            return "FALSE"
        raise InvalidDefaultError(f'Invalid default value for boolean column "{column}": {value!r}')

    if kind == ColumnKind.NUMERIC:
        if isinstance(value, bool):
            raise InvalidDefaultError(f'Invalid default value for numeric column "{column}": {value!r}')
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise InvalidDefaultError(
                f'Invalid default value for numeric column "{column}": {value!r}'
            ) from None
        if not math.isfinite(number):
            raise InvalidDefaultError(f'Invalid default value for numeric column "{column}": {value!r}')
        return str(int(number)) if number.is_integer() else repr(number)

    if kind == ColumnKind.TIMESTAMPTZ:
        if is_now(value):
            return "CURRENT_TIMESTAMP"
        if isinstance(value, (datetime, date)):
            return escape_literal(value.isoformat())
        try:
            datetime.fromisoformat(str(value))
        except ValueError:
            raise InvalidDefaultError(
                f'Invalid default value for date column "{column}": {value!r}'
            ) from None
        return escape_literal(str(value))

    return escape_literal(str(value))


def column_definition(column: ColumnSpec, nullable: bool = False) -> str:
    """Render a column definition for CREATE TABLE / ADD COLUMN.

    Args:
        column: Expected column
        nullable: Force the column to be nullable even if declared NOT NULL
    """
    parts = [quote(column.name, "column name"), column.type.sql]
    if column.primary_key:
        parts.append("PRIMARY KEY")
    if column.not_null and not nullable:
        parts.append("NOT NULL")
    if column.has_default:
        parts.append("DEFAULT " + render_default(column.default, column.type, column.name))
    if column.references:
        parts.append(f"REFERENCES {quote(column.references, 'table name')}(\"id\") ON DELETE SET NULL")
    return " ".join(parts)


def create_table(spec: TableSpec) -> str:
    body = ",\n  ".join(column_definition(col) for col in spec.columns)
    return f"CREATE TABLE IF NOT EXISTS {quote(spec.table, 'table name')} (\n  {body}\n)"


def add_column(table: str, column: ColumnSpec, nullable: bool = False) -> list[str]:
    """Statements that add ``column`` to an existing table.

    A NOW() default cannot be attached by ALTER TABLE in SQLite, so the
    column is added without it and existing rows are backfilled.
    """
    if column.has_default and is_now(column.default):
        bare = ColumnSpec(
            name=column.name,
            type=column.type,
            api_name=column.api_name,
            references=column.references,
        )
        return [
            f"ALTER TABLE {quote(table, 'table name')} ADD COLUMN {column_definition(bare)}",
            f"UPDATE {quote(table, 'table name')} SET {quote(column.name, 'column name')} = "
            f"CURRENT_TIMESTAMP WHERE {quote(column.name, 'column name')} IS NULL",
        ]
    return [
        f"ALTER TABLE {quote(table, 'table name')} ADD COLUMN "
        f"{column_definition(column, nullable=nullable)}"
    ]
