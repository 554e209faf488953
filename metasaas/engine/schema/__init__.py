"""
Schema module for the entity engine.

This module provides the declarative model and everything derived from it:
- Type definitions (EntityDef, FieldDef, RelationshipDef, WorkflowDef)
- Naming rules between declared names, tables and columns
- The physical table layout of each entity
- The entity registry and YAML/JSON declaration files

Invariants:
    - Declarations are immutable once built
    - API names are camelCase, storage names snake_case, never mixed
    - All entities must be registered before the registry is frozen

How to change safely:
    - Add new field types to FieldType and physical.py together
    - Keep to_dict()/from_dict() symmetric
"""

from .loader import EntityFileError, load_entities, parse_entities
from .physical import ColumnInfo, ColumnKind, ColumnSpec, ColumnType, TableSpec, build_table_spec
from .registry import DuplicateRegistrationError, EntityRegistry, RegistryFrozenError
from .types import (
    NO_DEFAULT,
    EntityDef,
    EntityHooks,
    FieldDef,
    FieldType,
    RelationshipDef,
    RelationshipType,
    SortSpec,
    Transition,
    WorkflowDef,
    field,
)

__all__ = [
    # Declarations
    "NO_DEFAULT",
    "EntityDef",
    "EntityHooks",
    "FieldDef",
    "FieldType",
    "RelationshipDef",
    "RelationshipType",
    "SortSpec",
    "Transition",
    "WorkflowDef",
    "field",
    # Physical layout
    "ColumnInfo",
    "ColumnKind",
    "ColumnSpec",
    "ColumnType",
    "TableSpec",
    "build_table_spec",
    # Registry and files
    "EntityRegistry",
    "DuplicateRegistrationError",
    "RegistryFrozenError",
    "EntityFileError",
    "load_entities",
    "parse_entities",
]
