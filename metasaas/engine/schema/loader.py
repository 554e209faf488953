"""
Entity declaration files.

Declarations can live in YAML or JSON files instead of Python modules.
Hooks cannot be expressed in a file; entities loaded here have none.

Example file:
    entities:
      - name: Task
        pluralName: Tasks
        fields:
          - name: title
            type: text
            required: true
          - name: status
            type: enum
            required: true
            defaultValue: todo
            options: [todo, in_progress, done]
        relationships:
          - type: belongsTo
            entity: Project
        workflows:
          - field: status
            transitions:
              - {from: todo, to: in_progress}
              - {from: in_progress, to: done, requires: [assignee]}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .types import EntityDef


class EntityFileError(ValueError):
    """An entity file could not be parsed."""

    pass


def parse_entities(data: Any) -> list[EntityDef]:
    """Build declarations from parsed file content.

    Accepts either ``{"entities": [...]}`` or a bare list.
    """
    if isinstance(data, dict):
        data = data.get("entities")
    if not isinstance(data, list):
        raise EntityFileError("Expected a list of entities or a mapping with an 'entities' key")

    entities = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise EntityFileError(f"Entity #{index} is not a mapping")
        try:
            entities.append(EntityDef.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            name = item.get("name", f"#{index}")
            raise EntityFileError(f"Invalid entity {name}: {e}") from e
    return entities


def load_entities(path: str | Path) -> list[EntityDef]:
    """Load declarations from a ``.yaml``/``.yml`` or ``.json`` file.

    Raises:
        EntityFileError: If the file cannot be parsed
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise EntityFileError(f"Cannot parse {path}: {e}") from e
    return parse_entities(data)
