"""
Actions module for the entity engine.

This module defines what can be dispatched:
- Operation, caller and context types
- The operation compiler and registry
- Input validation, permission evaluation and workflow rules
- The closed error taxonomy

Invariants:
    - Operation ids are "entity.verb" and unique per registry
    - Permissions are first-match-wins with default deny
    - Workflow transitions are checked inside execute, for every caller
"""

from .compiler import compile_entity
from .errors import (
    EngineError,
    ErrorType,
    FieldError,
    InputValidationError,
    MissingRequiredFieldError,
    OperationNotFoundError,
    PermissionDeniedError,
    RecordNotFoundError,
    WorkflowTransitionError,
    classify_error,
)
from .registry import OperationRegistry
from .types import (
    ALLOW_ALL,
    Caller,
    CallerType,
    CompiledOperation,
    Effect,
    ExecutionContext,
    OperationExample,
    OperationHooks,
    PermissionRule,
    SideEffect,
    SideEffectType,
)
from .workflow import TransitionResult, validate_transitions

__all__ = [
    "compile_entity",
    "OperationRegistry",
    # Types
    "ALLOW_ALL",
    "Caller",
    "CallerType",
    "CompiledOperation",
    "Effect",
    "ExecutionContext",
    "OperationExample",
    "OperationHooks",
    "PermissionRule",
    "SideEffect",
    "SideEffectType",
    # Workflow
    "TransitionResult",
    "validate_transitions",
    # Errors
    "EngineError",
    "ErrorType",
    "FieldError",
    "InputValidationError",
    "MissingRequiredFieldError",
    "OperationNotFoundError",
    "PermissionDeniedError",
    "RecordNotFoundError",
    "WorkflowTransitionError",
    "classify_error",
]
