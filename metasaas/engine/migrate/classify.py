"""
Column type change classification.

Decides whether moving a live column to the expected physical type can be
applied automatically (widening, no data loss) or must be left for an
operator (narrowing or unrecognized).

Invariants:
    - Same type is always safe
    - Unrecognized pairs are unsafe
    - Classification is pure; nothing here touches the database

How to change safely:
    - Only add a pair to the safe list if every existing value converts
      without loss
    - Add a test for every new pair
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..schema.physical import ColumnInfo, ColumnKind, ColumnType

_TEXT = ColumnKind.TEXT.value
_VARCHAR = ColumnKind.VARCHAR.value
_NUMERIC = ColumnKind.NUMERIC.value
_BOOLEAN = ColumnKind.BOOLEAN.value
_TIMESTAMPTZ = ColumnKind.TIMESTAMPTZ.value
_STRINGS = (_TEXT, _VARCHAR)


@dataclass(frozen=True)
class TypeChange:
    """Result of comparing a live column with its expected type.

    Attributes:
        safe: Whether the change may be applied automatically
        reason: Human-readable explanation
        changed: False when the live column already has the expected type
    """

    safe: bool
    reason: str
    changed: bool = True


def _varchar(length: Optional[int]) -> str:
    return f"VARCHAR({length})" if length is not None else "VARCHAR"


def classify_type_change(existing: ColumnInfo, expected: ColumnType) -> TypeChange:
    """Classify moving ``existing`` to ``expected``.

    Args:
        existing: Column as read from the live schema
        expected: Type the declaration maps to

    Returns:
        TypeChange describing safety and reason

    Example:
        >>> classify_type_change(ColumnInfo.from_declared("x", "VARCHAR(255)"), TEXT)
        TypeChange(safe=True, reason='VARCHAR → TEXT is safe (widening)', changed=True)
    """
    current = existing.data_type
    target = expected.data_type

    if current == target:
        if target == _VARCHAR and expected.length is not None and existing.max_length is not None:
            if expected.length > existing.max_length:
                return TypeChange(
                    True,
                    f"Widening {_varchar(existing.max_length)} → {_varchar(expected.length)}",
                )
            if expected.length < existing.max_length:
                return TypeChange(
                    False,
                    f"Narrowing {_varchar(existing.max_length)} → {_varchar(expected.length)} "
                    "may truncate data",
                )
        return TypeChange(True, "Same type", changed=False)

    if current == _VARCHAR and target == _TEXT:
        return TypeChange(True, "VARCHAR → TEXT is safe (widening)")
    if current == _TEXT and target == _VARCHAR:
        return TypeChange(False, f"TEXT → {_varchar(expected.length)} may truncate data")
    if current == _VARCHAR and target == _NUMERIC:
        return TypeChange(False, "VARCHAR → NUMERIC may fail for non-numeric values")
    if current == _NUMERIC and target in _STRINGS:
        return TypeChange(True, "NUMERIC → text/varchar is safe")
    if current == _BOOLEAN and target == _TEXT:
        return TypeChange(True, "BOOLEAN → TEXT is safe")
    if current in _STRINGS and target == _BOOLEAN:
        return TypeChange(False, "TEXT/VARCHAR → BOOLEAN may fail for non-boolean values")
    if current == _TIMESTAMPTZ and target in _STRINGS:
        return TypeChange(True, "TIMESTAMPTZ → text is safe")
    if current in _STRINGS and target == _TIMESTAMPTZ:
        return TypeChange(False, "TEXT → TIMESTAMPTZ may fail for non-date values")

    return TypeChange(False, f"{current} → {target} is not a recognized safe conversion")
