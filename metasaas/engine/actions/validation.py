"""
Input validation against an operation's input model.

Turns a raw, untrusted mapping into the plain dict an operation executes
with, or an InputValidationError carrying one FieldError per problem.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ValidationError

from .errors import FieldError, InputValidationError


def _field_path(loc: tuple[Any, ...]) -> str:
    if not loc:
        return "input"
    return ".".join(str(part) for part in loc)


def field_errors(error: ValidationError) -> list[FieldError]:
    return [
        FieldError(field=_field_path(item["loc"]), message=item["msg"], code=item["type"])
        for item in error.errors()
    ]


def validate_input(model: type[BaseModel], raw_input: Any, operation_id: str) -> dict[str, Any]:
    """Validate ``raw_input`` and return it keyed by declared names.

    Keys the caller did not send are left out, except where the model
    declares a non-null default, which is filled in.

    Raises:
        InputValidationError: If the input does not match the model
    """
    try:
        instance = model.model_validate(raw_input)
    except ValidationError as e:
        raise InputValidationError(operation_id, field_errors(e)) from e

    data = instance.model_dump(mode="json", by_alias=True, exclude_unset=True)
    defaults = instance.model_dump(mode="json", by_alias=True)
    for key, value in defaults.items():
        if key not in data and value is not None:
            data[key] = value
    return data
