"""
Input and output shapes of compiled operations.

Each entity yields pydantic models built at compile time with
``create_model``. Declared field names are exposed as aliases; the Python
attribute names are positional (``field_0``, ``field_1``...) so that a
declared name can never collide with a BaseModel attribute.

Invariants:
    - Unknown input keys are ignored
    - Optional fields accept omission and null
    - A required field with a declared default is optional and gets the default
    - Update payloads accept any subset of fields
    - belongsTo links are accepted under their input name as a uuid string

How to change safely:
    - Keep every field type in _ANNOTATIONS; a missing type raises at compile time
    - Models must be dumped with by_alias=True to get declared names back
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    AnyUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    PlainValidator,
    StrictBool,
    StrictFloat,
    TypeAdapter,
    ValidationError,
    WithJsonSchema,
    create_model,
)

from ..schema.types import EntityDef, FieldDef, FieldType

_URL_ADAPTER = TypeAdapter(AnyUrl)
_DATE_ADAPTER = TypeAdapter(Union[date, datetime])
_DATETIME_ADAPTER = TypeAdapter(datetime)


def _check_url(value: str) -> str:
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise ValueError("Input should be a valid URL") from e
    return value


def _check_uuid(value: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError as e:
        raise ValueError("Input should be a valid UUID") from e


def _parse_date(value: Any) -> Union[date, datetime]:
    try:
        return _DATE_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise ValueError("Input should be a valid date or datetime") from e


def _parse_datetime(value: Any) -> datetime:
    try:
        return _DATETIME_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise ValueError("Input should be a valid datetime") from e


UrlStr = Annotated[str, AfterValidator(_check_url), WithJsonSchema({"type": "string", "format": "uri"})]
UuidStr = Annotated[str, AfterValidator(_check_uuid), WithJsonSchema({"type": "string", "format": "uuid"})]
DateValue = Annotated[Any, PlainValidator(_parse_date), WithJsonSchema({"type": "string", "format": "date"})]
DateTimeValue = Annotated[
    Any, PlainValidator(_parse_datetime), WithJsonSchema({"type": "string", "format": "date-time"})
]

_ANNOTATIONS: dict[FieldType, Any] = {
    FieldType.TEXT: str,
    FieldType.RICH_TEXT: str,
    FieldType.PHONE: str,
    FieldType.EMAIL: EmailStr,
    FieldType.URL: UrlStr,
    FieldType.CURRENCY: StrictFloat,
    FieldType.NUMBER: StrictFloat,
    FieldType.PERCENTAGE: StrictFloat,
    FieldType.DATE: DateValue,
    FieldType.DATETIME: DateTimeValue,
    FieldType.BOOLEAN: StrictBool,
}

_INPUT_CONFIG = ConfigDict(extra="ignore")


def annotation_for(f: FieldDef) -> Any:
    """pydantic annotation for a declared field (without nullability)."""
    if f.type == FieldType.ENUM:
        if f.options:
            return Literal[tuple(f.options)]
        return str
    return _ANNOTATIONS[f.type]


def _field_definitions(entity: EntityDef, *, partial: bool) -> dict[str, Any]:
    """Build create_model field definitions keyed by internal name.

    Args:
        entity: Entity declaration
        partial: If True every field is optional and no defaults apply
    """
    specs: dict[str, tuple[Any, Any]] = {}

    for f in entity.fields:
        annotation = annotation_for(f)
        description = f.description or None
        if partial or not f.required:
            default = f.default if f.has_default and not partial else None
            specs[f.name] = (
                Optional[annotation],
                Field(default=default, alias=f.name, description=description),
            )
        elif f.has_default:
            specs[f.name] = (
                annotation,
                Field(default=f.default, alias=f.name, description=description),
            )
        else:
            specs[f.name] = (annotation, Field(alias=f.name, description=description))

    # A link input replaces a declared field of the same name.
    for rel in entity.belongs_to:
        specs[rel.input_name] = (
            Optional[UuidStr],
            Field(default=None, alias=rel.input_name, description=f"{rel.entity} id"),
        )

    return {f"field_{index}": spec for index, spec in enumerate(specs.values())}


def build_create_model(entity: EntityDef) -> type[BaseModel]:
    return create_model(
        f"{entity.name}CreateInput",
        __config__=_INPUT_CONFIG,
        **_field_definitions(entity, partial=False),
    )


def build_update_model(entity: EntityDef) -> type[BaseModel]:
    data_model = create_model(
        f"{entity.name}UpdateData",
        __config__=_INPUT_CONFIG,
        **_field_definitions(entity, partial=True),
    )
    return create_model(
        f"{entity.name}UpdateInput",
        __config__=_INPUT_CONFIG,
        id=(UuidStr, Field(description=f"{entity.name} id")),
        data=(data_model, Field(description="Fields to change")),
    )


def build_id_model(entity: EntityDef, verb: str) -> type[BaseModel]:
    """Input shape ``{id}`` used by get and delete."""
    return create_model(
        f"{entity.name}{verb}Input",
        __config__=_INPUT_CONFIG,
        id=(UuidStr, Field(description=f"{entity.name} id")),
    )


class SearchInput(BaseModel):
    model_config = _INPUT_CONFIG

    term: str
    fields: Optional[list[str]] = None


class OrderByInput(BaseModel):
    model_config = _INPUT_CONFIG

    field: str
    direction: Literal["asc", "desc"] = "asc"


class ListInput(BaseModel):
    """Input of every list operation."""

    model_config = _INPUT_CONFIG

    where: Optional[dict[str, Any]] = None
    search: Optional[SearchInput] = None
    order_by: Optional[OrderByInput] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class DeleteResult(BaseModel):
    success: bool


def build_record_model(entity: EntityDef) -> type[BaseModel]:
    """Shape of a stored record as returned by operations."""
    definitions: dict[str, Any] = {
        "id": (str, Field(alias="id")),
        "tenant_id": (str, Field(alias="tenantId")),
        "created_at": (Optional[str], Field(default=None, alias="createdAt")),
        "updated_at": (Optional[str], Field(default=None, alias="updatedAt")),
    }
    for name, spec in _field_definitions(entity, partial=True).items():
        definitions[name] = spec
    return create_model(f"{entity.name}Record", **definitions)


def build_list_output_model(entity: EntityDef, record_model: type[BaseModel]) -> type[BaseModel]:
    return create_model(
        f"{entity.name}ListOutput",
        data=(list[record_model], ...),  # type: ignore[valid-type]
        total=(int, ...),
    )
