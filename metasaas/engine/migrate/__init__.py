"""
Schema evolution for the entity engine.

Brings live SQLite tables in line with entity declarations:
- Creates missing tables
- Adds missing columns
- Converts column types when the conversion cannot lose data
- Reports everything else as a warning

Invariants:
    - Nothing is ever dropped
    - Identifiers and default literals are validated before any DDL runs
    - Runs once, before traffic; there is no migration lock
"""

from .backend import SchemaBackend, SqliteSchemaBackend
from .classify import TypeChange, classify_type_change
from .ddl import InvalidDefaultError, UnsafeIdentifierError
from .platform import PLATFORM_TABLES, ensure_platform_tables
from .reconciler import MigrationReport, SchemaReconciler

__all__ = [
    "SchemaBackend",
    "SqliteSchemaBackend",
    "TypeChange",
    "classify_type_change",
    "InvalidDefaultError",
    "UnsafeIdentifierError",
    "PLATFORM_TABLES",
    "ensure_platform_tables",
    "MigrationReport",
    "SchemaReconciler",
]
