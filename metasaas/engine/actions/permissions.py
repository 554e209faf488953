"""
Permission evaluation.

Rules are evaluated in declaration order; the first rule whose conditions
all match decides. When no rule matches the caller is denied, so an
operation with no rules can never run.

Invariants:
    - First match wins
    - Default deny
    - An empty condition set matches every caller
"""

from __future__ import annotations

from typing import Sequence

from .errors import PermissionDeniedError
from .types import Caller, CompiledOperation, Effect, PermissionRule


def rule_matches(rule: PermissionRule, caller: Caller) -> bool:
    """Check whether every condition of ``rule`` holds for ``caller``."""
    if rule.caller_types and caller.type not in rule.caller_types:
        return False
    if rule.roles and not set(rule.roles).intersection(caller.roles):
        return False
    return True


def evaluate(rules: Sequence[PermissionRule], caller: Caller) -> bool:
    """Return True if ``caller`` is allowed by ``rules``."""
    for rule in rules:
        if rule_matches(rule, caller):
            return rule.effect == Effect.ALLOW
    return False


def check_permission(operation: CompiledOperation, caller: Caller) -> None:
    """Raise PermissionDeniedError unless the caller may run the operation."""
    if not evaluate(operation.permissions, caller):
        raise PermissionDeniedError(operation.id, caller.user_id)
