"""
Physical storage model derived from entity declarations.

This module is the single mapping from logical field types to physical
column kinds. The table builder, the migration differ and the data access
handle all read a TableSpec built here, so they cannot drift apart.

Invariants:
    - FIELD_COLUMN_TYPES covers every FieldType
    - Every table carries the system columns id, tenant_id, created_at, updated_at
    - Field columns come first in declaration order, then FK columns
    - An FK column is only added when no field already maps to that column name

How to change safely:
    - Changing a mapping changes the expected type of existing columns; the
      reconciler will classify the change and may refuse it
    - Keep ColumnType.parse() able to read back every type this module renders
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .naming import to_table_name
from .types import NO_DEFAULT, EntityDef, FieldType

TENANT_COLUMN = "tenant_id"
SYSTEM_COLUMNS = ("id", TENANT_COLUMN, "created_at", "updated_at")

_VARCHAR_RE = re.compile(r"^(?:VARCHAR|CHARACTER VARYING)\s*\(\s*(\d+)\s*\)$")


class ColumnKind(Enum):
    """Closed set of physical column kinds.

    The value is the information-schema spelling of the type, which is what
    live schema inspection reports.
    """

    TEXT = "text"
    VARCHAR = "character varying"
    NUMERIC = "numeric"
    TIMESTAMPTZ = "timestamp with time zone"
    BOOLEAN = "boolean"
    UUID = "uuid"


_SQL_NAMES = {
    ColumnKind.TEXT: "TEXT",
    ColumnKind.NUMERIC: "NUMERIC",
    ColumnKind.TIMESTAMPTZ: "TIMESTAMPTZ",
    ColumnKind.BOOLEAN: "BOOLEAN",
    ColumnKind.UUID: "UUID",
}

_SQL_ALIASES = {
    "TEXT": ColumnKind.TEXT,
    "NUMERIC": ColumnKind.NUMERIC,
    "TIMESTAMPTZ": ColumnKind.TIMESTAMPTZ,
    "TIMESTAMP WITH TIME ZONE": ColumnKind.TIMESTAMPTZ,
    "BOOLEAN": ColumnKind.BOOLEAN,
    "UUID": ColumnKind.UUID,
}


@dataclass(frozen=True)
class ColumnType:
    """A physical column type, e.g. VARCHAR(255)."""

    kind: ColumnKind
    length: Optional[int] = None

    @property
    def sql(self) -> str:
        """DDL spelling of the type."""
        if self.kind == ColumnKind.VARCHAR:
            return f"VARCHAR({self.length})"
        return _SQL_NAMES[self.kind]

    @property
    def data_type(self) -> str:
        """Information-schema spelling of the type."""
        return self.kind.value

    def __str__(self) -> str:
        return self.sql


@dataclass(frozen=True)
class ColumnInfo:
    """A column as it currently exists in the live schema.

    Read fresh on every reconciliation pass, never cached.

    Attributes:
        name: Column name
        data_type: Information-schema type name (e.g. "character varying")
        max_length: Character limit for varchar columns, else None
        not_null: Whether the column is declared NOT NULL
        default: Raw default expression as stored, or None
        primary_key: Whether the column is (part of) the primary key
        declared_type: Type exactly as declared in the DDL
    """

    name: str
    data_type: str
    max_length: Optional[int] = None
    not_null: bool = False
    default: Optional[str] = None
    primary_key: bool = False
    declared_type: str = ""

    @classmethod
    def from_declared(cls, name: str, declared_type: str, **kwargs: Any) -> ColumnInfo:
        """Build from a declared DDL type such as ``VARCHAR(255)``."""
        data_type, max_length = parse_declared_type(declared_type)
        return cls(
            name=name,
            data_type=data_type,
            max_length=max_length,
            declared_type=declared_type,
            **kwargs,
        )


def parse_declared_type(declared: str) -> tuple[str, Optional[int]]:
    """Normalize a declared SQL type to (information-schema name, max length).

    Unrecognized types come back lowercased so they never compare equal to
    an expected kind by accident.
    """
    upper = " ".join(declared.strip().upper().split())
    if upper in _SQL_ALIASES:
        return _SQL_ALIASES[upper].value, None
    match = _VARCHAR_RE.match(upper)
    if match:
        return ColumnKind.VARCHAR.value, int(match.group(1))
    return upper.lower(), None


TEXT = ColumnType(ColumnKind.TEXT)
NUMERIC = ColumnType(ColumnKind.NUMERIC)
TIMESTAMPTZ = ColumnType(ColumnKind.TIMESTAMPTZ)
BOOLEAN = ColumnType(ColumnKind.BOOLEAN)
UUID = ColumnType(ColumnKind.UUID)


def varchar(length: int) -> ColumnType:
    return ColumnType(ColumnKind.VARCHAR, length)


FIELD_COLUMN_TYPES: dict[FieldType, ColumnType] = {
    FieldType.TEXT: TEXT,
    FieldType.RICH_TEXT: TEXT,
    FieldType.PHONE: TEXT,
    FieldType.EMAIL: varchar(512),
    FieldType.URL: varchar(512),
    FieldType.CURRENCY: NUMERIC,
    FieldType.NUMBER: NUMERIC,
    FieldType.PERCENTAGE: NUMERIC,
    FieldType.DATE: TIMESTAMPTZ,
    FieldType.DATETIME: TIMESTAMPTZ,
    FieldType.BOOLEAN: BOOLEAN,
    FieldType.ENUM: varchar(255),
}


def column_type_for(field_type: FieldType) -> ColumnType:
    return FIELD_COLUMN_TYPES[field_type]


@dataclass(frozen=True)
class ColumnSpec:
    """Expected column of an entity table.

    Attributes:
        name: snake_case column name
        type: Physical type
        api_name: camelCase key used by operations and returned records
        not_null: Whether the column is NOT NULL when created
        default: Declared default literal (NO_DEFAULT if none)
        field_type: Logical type of the backing field, None for system/FK columns
        references: Target table for FK columns
        primary_key: True for ``id`` only
        system: True for the system columns
    """

    name: str
    type: ColumnType
    api_name: str
    not_null: bool = False
    default: Any = NO_DEFAULT
    field_type: Optional[FieldType] = None
    references: Optional[str] = None
    primary_key: bool = False
    system: bool = False

    @property
    def is_field(self) -> bool:
        return self.field_type is not None

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT


@dataclass(frozen=True)
class TableSpec:
    """Expected physical layout of one entity table.

    ``aliases`` maps extra API names onto existing columns, e.g. the
    ``projectId`` link input of a belongsTo whose column is already declared
    as a field.
    """

    entity: str
    table: str
    columns: tuple[ColumnSpec, ...]
    aliases: tuple[tuple[str, str], ...] = ()

    def column(self, name: str) -> Optional[ColumnSpec]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def by_api_name(self, api_name: str) -> Optional[ColumnSpec]:
        for col in self.columns:
            if col.api_name == api_name:
                return col
        for alias, column in self.aliases:
            if alias == api_name:
                return self.column(column)
        return None

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    @property
    def field_columns(self) -> tuple[ColumnSpec, ...]:
        return tuple(col for col in self.columns if col.is_field)


def system_columns() -> tuple[ColumnSpec, ...]:
    return (
        ColumnSpec("id", UUID, "id", not_null=True, primary_key=True, system=True),
        ColumnSpec(TENANT_COLUMN, UUID, "tenantId", not_null=True, system=True),
        ColumnSpec("created_at", TIMESTAMPTZ, "createdAt", not_null=True, default="NOW()", system=True),
        ColumnSpec("updated_at", TIMESTAMPTZ, "updatedAt", not_null=True, default="NOW()", system=True),
    )


def build_table_spec(entity: EntityDef) -> TableSpec:
    """Derive the expected table layout for an entity.

    Args:
        entity: Entity declaration

    Returns:
        TableSpec with system, field and FK columns
    """
    columns = list(system_columns())
    taken = set(SYSTEM_COLUMNS)
    aliases = []

    for f in entity.fields:
        columns.append(
            ColumnSpec(
                name=f.column_name,
                type=column_type_for(f.type),
                api_name=f.name,
                not_null=f.required,
                default=f.default,
                field_type=f.type,
            )
        )
        taken.add(f.column_name)

    for rel in entity.belongs_to:
        if rel.column_name in taken:
            covering = next(col for col in columns if col.name == rel.column_name)
            if covering.api_name != rel.input_name and not covering.system:
                aliases.append((rel.input_name, rel.column_name))
            continue
        columns.append(
            ColumnSpec(
                name=rel.column_name,
                type=UUID,
                api_name=rel.input_name,
                references=to_table_name(rel.entity),
            )
        )
        taken.add(rel.column_name)

    return TableSpec(
        entity=entity.name,
        table=to_table_name(entity.name),
        columns=tuple(columns),
        aliases=tuple(aliases),
    )
