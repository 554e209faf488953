"""
Error taxonomy surfaced by dispatch.

Every failure a caller can see is classified into one of five error types
so protocol adapters can map them (e.g. to HTTP 404/400/403/422/500)
without inspecting messages:

- not_found: unknown operation id
- validation: input did not match the operation's input shape
- permission: no permission rule allowed the caller
- workflow: illegal state transition or missing transition precondition
- unknown: anything else, including errors raised by business logic

Invariants:
    - Only the first four types carry caller-safe detail
    - unknown errors are surfaced with a generic message

How to change safely:
    - The taxonomy is closed; new exception classes must subclass one of the
      classified errors or they are reported as unknown
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence


class ErrorType(Enum):
    """Closed set of dispatch error categories."""

    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    PERMISSION = "permission"
    WORKFLOW = "workflow"
    UNKNOWN = "unknown"


GENERIC_ERROR_MESSAGE = "An unexpected error occurred"


class EngineError(Exception):
    """Base exception for engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional caller-safe context
    """

    error_type = ErrorType.UNKNOWN

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ENGINE_ERROR"
        self.details = details or {}


class OperationNotFoundError(EngineError):
    """No operation is registered under the requested id."""

    error_type = ErrorType.NOT_FOUND

    def __init__(self, operation_id: str) -> None:
        super().__init__(
            f'Operation "{operation_id}" not found',
            code="OPERATION_NOT_FOUND",
        )
        self.operation_id = operation_id


@dataclass(frozen=True)
class FieldError:
    """One field-level validation diagnostic.

    Attributes:
        field: Dotted path of the offending field (e.g. "data.email")
        message: Human-readable message
        code: Machine-readable code (e.g. "missing", "string_type")
    """

    field: str
    message: str
    code: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


class InputValidationError(EngineError):
    """Input did not match the operation's declared input shape."""

    error_type = ErrorType.VALIDATION

    def __init__(self, operation_id: str, field_errors: Sequence[FieldError]) -> None:
        self.operation_id = operation_id
        self.field_errors = list(field_errors)
        super().__init__(
            f'Validation failed for operation "{operation_id}"',
            code="VALIDATION_FAILED",
            details={"field_errors": [e.to_dict() for e in self.field_errors]},
        )


class PermissionDeniedError(EngineError):
    """No permission rule allowed the caller to run the operation."""

    error_type = ErrorType.PERMISSION

    def __init__(self, operation_id: str, user_id: str) -> None:
        super().__init__(
            f'Permission denied: user "{user_id}" cannot execute operation "{operation_id}"',
            code="PERMISSION_DENIED",
        )
        self.operation_id = operation_id
        self.user_id = user_id


class WorkflowTransitionError(EngineError):
    """A workflow field was moved along a transition that is not declared.

    Attributes:
        field: Workflow field name
        from_state: Current state ("(none)" on create)
        to_state: Attempted state
        valid_targets: Legal destinations from from_state (empty = terminal)
    """

    error_type = ErrorType.WORKFLOW

    def __init__(
        self,
        field: str,
        from_state: Any,
        to_state: Any,
        valid_targets: Sequence[str],
        message: Optional[str] = None,
    ) -> None:
        self.field = field
        self.from_state = from_state
        self.to_state = to_state
        self.valid_targets = list(valid_targets)
        if message is None:
            targets = ", ".join(self.valid_targets)
            message = (
                f'Invalid {field} transition: "{from_state}" -> "{to_state}" is not allowed. '
                f'Valid transitions from "{from_state}": [{targets}]'
            )
        super().__init__(
            message,
            code="WORKFLOW_TRANSITION_INVALID",
            details={
                "field": field,
                "from": from_state,
                "to": to_state,
                "valid_targets": self.valid_targets,
            },
        )


class MissingRequiredFieldError(WorkflowTransitionError):
    """A legal transition was attempted without a field it requires."""

    def __init__(
        self,
        field: str,
        from_state: Any,
        to_state: Any,
        required_field: str,
        valid_targets: Sequence[str] = (),
    ) -> None:
        super().__init__(
            field,
            from_state,
            to_state,
            valid_targets,
            message=(
                f'Cannot transition {field} to "{to_state}": '
                f'required field "{required_field}" must have a value'
            ),
        )
        self.required_field = required_field
        self.code = "WORKFLOW_REQUIREMENT_MISSING"
        self.details["required_field"] = required_field


class RecordNotFoundError(EngineError):
    """A record addressed by id does not exist for the tenant."""

    def __init__(self, entity: str, record_id: str) -> None:
        super().__init__(
            f'{entity} "{record_id}" not found',
            code="RECORD_NOT_FOUND",
            details={"entity": entity, "id": record_id},
        )
        self.entity = entity
        self.record_id = record_id


def classify_error(error: BaseException) -> ErrorType:
    """Map an exception onto the closed taxonomy."""
    if isinstance(error, EngineError):
        return error.error_type
    return ErrorType.UNKNOWN
