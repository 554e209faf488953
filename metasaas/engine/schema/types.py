"""
Core type definitions for entity declarations.

This module defines the declarative model every other part of the engine
reads from:
- FieldDef: A typed field on an entity
- RelationshipDef: belongsTo / hasMany / manyToMany link to another entity
- WorkflowDef / Transition: Linear state machine over one field
- EntityDef: The complete declaration of a business object

Invariants:
    - Declarations are immutable (frozen dataclasses)
    - Field names are unique within an entity
    - A workflow's field references a declared field
    - The API name of a belongsTo link is always lowerFirst(alias or entity) + "Id",
      independent of the storage column named by foreign_key

How to change safely:
    - Add new field types to FieldType and to the physical mapping in
      physical.py in the same change
    - Keep to_dict()/from_dict() symmetric; hooks are never serialized
    - Never derive storage column names from input names or vice versa

Example:
    >>> from metasaas.engine.schema.types import EntityDef, field
    >>> Task = EntityDef(
    ...     name="Task",
    ...     plural_name="Tasks",
    ...     fields=(
    ...         field("title", "text", required=True),
    ...         field("status", "enum", required=True, default="todo",
    ...               options=("todo", "in_progress", "done")),
    ...     ),
    ... )
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .naming import lower_first, to_snake_case

_ENTITY_NAME_RE = re.compile(r"^[A-Z][A-Za-z0-9]*$")
_FIELD_NAME_RE = re.compile(r"^[a-z][A-Za-z0-9_]*$")


class _NoDefault:
    """Marker for a field without a declared default."""

    _instance: Optional[_NoDefault] = None

    def __new__(cls) -> _NoDefault:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_DEFAULT"

    def __bool__(self) -> bool:
        return False


NO_DEFAULT: Any = _NoDefault()


class FieldType(Enum):
    """Closed set of logical field types."""

    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    CURRENCY = "currency"
    DATE = "date"
    DATETIME = "datetime"
    NUMBER = "number"
    PERCENTAGE = "percentage"
    ENUM = "enum"
    RICH_TEXT = "rich_text"
    BOOLEAN = "boolean"

    @classmethod
    def from_str(cls, value: str) -> FieldType:
        """Convert string representation to FieldType.

        Args:
            value: String name of the field type

        Returns:
            Corresponding FieldType enum value

        Raises:
            ValueError: If value is not a valid field type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field type '{value}'. Valid types: {valid}")

    @property
    def is_numeric(self) -> bool:
        return self in (FieldType.CURRENCY, FieldType.NUMBER, FieldType.PERCENTAGE)

    @property
    def is_temporal(self) -> bool:
        return self in (FieldType.DATE, FieldType.DATETIME)


class RelationshipType(Enum):
    """Kinds of links between entities."""

    BELONGS_TO = "belongsTo"
    HAS_MANY = "hasMany"
    MANY_TO_MANY = "manyToMany"

    @classmethod
    def from_str(cls, value: str) -> RelationshipType:
        """Parse either the camelCase or the snake_case spelling."""
        for kind in cls:
            if value in (kind.value, kind.name.lower()):
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid relationship type '{value}'. Valid types: {valid}")


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single entity field.

    Attributes:
        name: camelCase field name, also the API input name
        type: Logical field type
        required: Whether the field must be supplied on create
        default: Default value applied when omitted (NO_DEFAULT if none)
        options: Allowed values for ENUM fields
        description: Human-readable description
        sensitive: Whether the value should be masked by presentation layers
    """

    name: str
    type: FieldType
    required: bool = False
    default: Any = NO_DEFAULT
    options: tuple[str, ...] = ()
    description: str = ""
    sensitive: bool = False

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if not _FIELD_NAME_RE.match(self.name):
            raise ValueError(
                f"Field name '{self.name}' must start with a lowercase letter and contain "
                "only letters, digits and underscores"
            )
        if self.options and self.type != FieldType.ENUM:
            raise ValueError(f"options are only valid on enum fields ('{self.name}')")

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    @property
    def column_name(self) -> str:
        """Storage column name for this field."""
        return to_snake_case(self.name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "required": self.required,
        }
        if self.has_default:
            result["defaultValue"] = self.default
        if self.options:
            result["options"] = list(self.options)
        if self.description:
            result["description"] = self.description
        if self.sensitive:
            result["sensitive"] = True
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            type=FieldType.from_str(data["type"]),
            required=data.get("required", False),
            default=data.get("defaultValue", data.get("default", NO_DEFAULT)),
            options=tuple(data.get("options") or ()),
            description=data.get("description", ""),
            sensitive=data.get("sensitive", False),
        )


@dataclass(frozen=True)
class RelationshipDef:
    """Link from one entity to another.

    Attributes:
        type: Relationship kind
        entity: Target entity name
        foreign_key: Storage column name (belongsTo only)
        alias: Alternative name for the link (``as`` in declaration files)
    """

    type: RelationshipType
    entity: str
    foreign_key: Optional[str] = None
    alias: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.entity:
            raise ValueError("Relationship target entity cannot be empty")

    @property
    def base_name(self) -> str:
        return self.alias or self.entity

    @property
    def input_name(self) -> str:
        """camelCase API field name, e.g. ``projectId``."""
        return lower_first(self.base_name) + "Id"

    @property
    def column_name(self) -> str:
        """snake_case storage column, e.g. ``project_id``."""
        return self.foreign_key or to_snake_case(self.base_name) + "_id"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type.value, "entity": self.entity}
        if self.foreign_key:
            result["foreignKey"] = self.foreign_key
        if self.alias:
            result["as"] = self.alias
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelationshipDef:
        return cls(
            type=RelationshipType.from_str(data["type"]),
            entity=data["entity"],
            foreign_key=data.get("foreignKey", data.get("foreign_key")),
            alias=data.get("as", data.get("alias")),
        )


@dataclass(frozen=True)
class Transition:
    """One legal move of a workflow field.

    Attributes:
        from_state: State the record must currently be in
        to_state: State the record moves to
        requires: Field names that must be non-empty before the move commits
        triggers: Labels carried on the transition event
    """

    from_state: str
    to_state: str
    requires: tuple[str, ...] = ()
    triggers: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"from": self.from_state, "to": self.to_state}
        if self.requires:
            result["requires"] = list(self.requires)
        if self.triggers:
            result["triggers"] = list(self.triggers)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transition:
        return cls(
            from_state=data["from"],
            to_state=data["to"],
            requires=tuple(data.get("requires") or ()),
            triggers=tuple(data.get("triggers") or ()),
        )


@dataclass(frozen=True)
class WorkflowDef:
    """Linear state machine over a single field."""

    field: str
    transitions: tuple[Transition, ...]

    def __post_init__(self) -> None:
        if not self.field:
            raise ValueError("Workflow field cannot be empty")

    def entry_states(self) -> list[str]:
        """States a record may be created in, in declaration order."""
        seen: list[str] = []
        for transition in self.transitions:
            if transition.from_state not in seen:
                seen.append(transition.from_state)
        return seen

    def targets_from(self, state: Any) -> list[str]:
        """Legal destinations from ``state``; empty for a terminal state."""
        return [t.to_state for t in self.transitions if t.from_state == state]

    def find(self, from_state: Any, to_state: Any) -> Optional[Transition]:
        for transition in self.transitions:
            if transition.from_state == from_state and transition.to_state == to_state:
                return transition
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "transitions": [t.to_dict() for t in self.transitions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowDef:
        return cls(
            field=data["field"],
            transitions=tuple(Transition.from_dict(t) for t in data.get("transitions", [])),
        )


BeforeHook = Callable[[dict[str, Any], Any], Awaitable[dict[str, Any]]]
AfterHook = Callable[[Any, dict[str, Any], Any], Awaitable[Any]]


@dataclass(frozen=True)
class EntityHooks:
    """Optional per-entity lifecycle callbacks.

    Before hooks receive ``(input, context)`` and return the (possibly
    transformed) input. After hooks receive ``(result, input, context)`` and
    return the (possibly transformed) result. Raising from any hook aborts
    the dispatch.
    """

    before_create: Optional[BeforeHook] = None
    after_create: Optional[AfterHook] = None
    before_update: Optional[BeforeHook] = None
    after_update: Optional[AfterHook] = None
    before_delete: Optional[BeforeHook] = None


@dataclass(frozen=True)
class SortSpec:
    """Default ordering for list operations."""

    field: str
    direction: str = "asc"

    def __post_init__(self) -> None:
        if self.direction not in ("asc", "desc"):
            raise ValueError(f"Sort direction must be 'asc' or 'desc', got '{self.direction}'")


@dataclass(frozen=True)
class EntityDef:
    """Complete declaration of a business entity.

    Attributes:
        name: PascalCase singular name (e.g. "Task")
        plural_name: Display plural (e.g. "Tasks")
        description: Human-readable description
        fields: Declared fields
        relationships: Links to other entities
        workflows: State machines over fields
        hooks: Optional lifecycle callbacks
        default_sort: Ordering used by list when none is requested
        ui: Presentation hints, carried but never interpreted by the engine

    Invariants:
        - Field names are unique
        - Every workflow field is a declared field
    """

    name: str
    plural_name: str
    fields: tuple[FieldDef, ...] = ()
    relationships: tuple[RelationshipDef, ...] = ()
    workflows: tuple[WorkflowDef, ...] = ()
    description: str = ""
    hooks: EntityHooks = dataclass_field(default_factory=EntityHooks)
    default_sort: Optional[SortSpec] = None
    ui: dict[str, Any] = dataclass_field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        """Validate entity definition."""
        if not self.name or not _ENTITY_NAME_RE.match(self.name):
            raise ValueError(f"Entity name '{self.name}' must be PascalCase")
        if not self.plural_name:
            raise ValueError(f"plural_name required for entity '{self.name}'")

        names = [f.name for f in self.fields]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate field names in '{self.name}': {duplicates}")

        for workflow in self.workflows:
            if workflow.field not in names:
                raise ValueError(
                    f"Workflow on '{self.name}' references unknown field '{workflow.field}'"
                )

    def get_field(self, name: str) -> Optional[FieldDef]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def belongs_to(self) -> tuple[RelationshipDef, ...]:
        return tuple(r for r in self.relationships if r.type == RelationshipType.BELONGS_TO)

    @property
    def operation_prefix(self) -> str:
        """Lowercased name used as the operation id prefix."""
        return self.name.lower()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation (hooks are dropped)."""
        result: dict[str, Any] = {
            "name": self.name,
            "pluralName": self.plural_name,
            "description": self.description,
            "fields": [f.to_dict() for f in self.fields],
            "relationships": [r.to_dict() for r in self.relationships],
            "workflows": [w.to_dict() for w in self.workflows],
        }
        if self.default_sort:
            result["defaultSort"] = {
                "field": self.default_sort.field,
                "direction": self.default_sort.direction,
            }
        if self.ui:
            result["ui"] = dict(self.ui)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityDef:
        """Create from dictionary representation."""
        sort = data.get("defaultSort") or (data.get("ui") or {}).get("defaultSort")
        return cls(
            name=data["name"],
            plural_name=data.get("pluralName", data.get("plural_name", "")),
            description=data.get("description", ""),
            fields=tuple(FieldDef.from_dict(f) for f in data.get("fields", [])),
            relationships=tuple(
                RelationshipDef.from_dict(r) for r in data.get("relationships", [])
            ),
            workflows=tuple(WorkflowDef.from_dict(w) for w in data.get("workflows", [])),
            default_sort=SortSpec(sort["field"], sort.get("direction", "asc")) if sort else None,
            ui=dict(data.get("ui") or {}),
        )


def field(
    name: str,
    type: str | FieldType,
    required: bool = False,
    default: Any = NO_DEFAULT,
    options: tuple[str, ...] | list[str] = (),
    **kwargs: Any,
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Args:
        name: camelCase field name
        type: Field type as string or FieldType
        required: Whether the field is required on create
        default: Declared default value
        options: Enum values
        **kwargs: Additional FieldDef attributes

    Returns:
        FieldDef instance

    Example:
        >>> field("status", "enum", options=("todo", "done"), default="todo")
    """
    kind = FieldType.from_str(type) if isinstance(type, str) else type
    return FieldDef(
        name=name,
        type=kind,
        required=required,
        default=default,
        options=tuple(options),
        **kwargs,
    )
