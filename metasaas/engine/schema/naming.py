"""
Name derivation helpers shared by the compiler, the reconciler and the data
access layer.

Invariants:
    - API names are camelCase, storage names are snake_case
    - Table names are the snake_cased, pluralized entity name
"""

from __future__ import annotations

import re

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SNAKE_SEGMENT = re.compile(r"_([a-z0-9])")


def to_snake_case(name: str) -> str:
    """``firstName`` -> ``first_name``, ``ProjectTask`` -> ``project_task``."""
    return _CAMEL_BOUNDARY.sub(r"\1_\2", name).lower()


def to_camel_case(name: str) -> str:
    """``first_name`` -> ``firstName``."""
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), name)


def lower_first(name: str) -> str:
    return name[:1].lower() + name[1:]


def pluralize(word: str) -> str:
    """Naive English plural used for table names."""
    if len(word) > 1 and word.endswith("y") and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "ch", "sh")):
        return word + "es"
    return word + "s"


def to_table_name(entity_name: str) -> str:
    """``Category`` -> ``categories``, ``ProjectTask`` -> ``project_tasks``."""
    return pluralize(to_snake_case(entity_name))


def to_column_name(field_name: str) -> str:
    return to_snake_case(field_name)


def from_column_name(column_name: str) -> str:
    return to_camel_case(column_name)
