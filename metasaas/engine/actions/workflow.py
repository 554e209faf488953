"""
Workflow transition validation.

Pure functions, no I/O. Called from the compiled create and update
operations whenever a payload touches a workflow field.

Invariants:
    - A change is legal only if some transition matches (from, to) exactly
    - A state with no outgoing transitions is terminal and rejects every move
    - requires fields must be non-empty in the payload or the current record;
      None and "" both count as missing
    - Every touched workflow must accept the change or the whole change is rejected

Example:
    >>> results = validate_transitions(task.workflows, {"status": "in_progress"},
    ...                                {"status": "todo"})
    >>> results[0].from_state, results[0].to_state
    ('todo', 'in_progress')
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from ..schema.types import WorkflowDef
from .errors import MissingRequiredFieldError, WorkflowTransitionError

CREATE_FROM_STATE = "(none)"


@dataclass(frozen=True)
class TransitionResult:
    """A validated workflow transition.

    Attributes:
        workflow_field: Field the workflow governs
        from_state: State before the change
        to_state: State after the change
        triggers: Labels declared on the matched transition
    """

    workflow_field: str
    from_state: Any
    to_state: Any
    triggers: tuple[str, ...] = ()


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def validate_transitions(
    workflows: Sequence[WorkflowDef],
    changes: Mapping[str, Any],
    current: Optional[Mapping[str, Any]],
) -> list[TransitionResult]:
    """Validate every workflow field touched by ``changes``.

    Args:
        workflows: Declared workflows of the entity
        changes: Proposed field values
        current: The record as currently stored

    Returns:
        One TransitionResult per touched workflow field (empty if none)

    Raises:
        WorkflowTransitionError: On the first illegal transition
        MissingRequiredFieldError: When a legal transition lacks a required field
    """
    current = current or {}
    results = []

    for workflow in workflows:
        if workflow.field not in changes:
            continue

        from_state = current.get(workflow.field)
        to_state = changes[workflow.field]
        transition = workflow.find(from_state, to_state)
        if transition is None:
            raise WorkflowTransitionError(
                workflow.field,
                from_state,
                to_state,
                workflow.targets_from(from_state),
            )

        for required in transition.requires:
            value = changes.get(required)
            if value is None:
                value = current.get(required)
            if _is_missing(value):
                raise MissingRequiredFieldError(workflow.field, from_state, to_state, required)

        results.append(
            TransitionResult(
                workflow_field=workflow.field,
                from_state=from_state,
                to_state=to_state,
                triggers=transition.triggers,
            )
        )

    return results


def validate_entry_state(workflows: Sequence[WorkflowDef], record: Mapping[str, Any]) -> None:
    """Check that a new record starts each workflow in an entry state.

    An entry state is any state some transition leaves from. Absent or
    empty workflow fields are not checked.

    Raises:
        WorkflowTransitionError: If a workflow field holds a non-entry state
    """
    for workflow in workflows:
        value = record.get(workflow.field)
        if _is_missing(value):
            continue
        entry_states = workflow.entry_states()
        if value not in entry_states:
            raise WorkflowTransitionError(workflow.field, CREATE_FROM_STATE, value, entry_states)
