"""
Entity registry.

The EntityRegistry holds every entity declaration known to one application
state. It provides:
- Registration with duplicate detection
- Lookup by name or by plural name (used by external adapters to resolve
  URL segments such as "tasks")
- Cached table layouts derived from each declaration
- Freeze mechanism to prevent changes once traffic is served

Invariants:
    - Registry is mutable during startup, frozen before serving
    - Entity names and plural names are unique
    - Fingerprint changes when any declaration changes

How to change safely:
    - Register all entities before calling freeze()
    - Use clear() only for test isolation

Example:
    >>> registry = EntityRegistry()
    >>> registry.register(Task)
    >>> registry.get_by_plural("tasks").name
    'Task'
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Iterable, Optional

from .physical import TableSpec, build_table_spec
from .types import EntityDef

logger = logging.getLogger(__name__)


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""

    pass


class DuplicateRegistrationError(Exception):
    """Raised when attempting to register a name twice."""

    pass


class EntityRegistry:
    """Registry of entity declarations.

    Thread-safety:
        Registration is thread-safe (uses internal lock). Lookups after
        freeze are lock-free.
    """

    def __init__(self) -> None:
        self._entities: dict[str, EntityDef] = {}
        self._by_plural: dict[str, EntityDef] = {}
        self._tables: dict[str, TableSpec] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Declaration fingerprint (available after freeze)."""
        return self._fingerprint

    def register(self, entity: EntityDef) -> None:
        """Register an entity declaration.

        Args:
            entity: The declaration to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name or plural is taken
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity '{entity.name}': registry is frozen"
                )
            if entity.name in self._entities:
                raise DuplicateRegistrationError(
                    f'Entity "{entity.name}" is already registered. Entity names must be unique.'
                )
            plural = entity.plural_name.lower()
            if plural in self._by_plural:
                existing = self._by_plural[plural]
                raise DuplicateRegistrationError(
                    f"Plural name '{entity.plural_name}' already used by entity '{existing.name}'"
                )

            self._entities[entity.name] = entity
            self._by_plural[plural] = entity
            logger.debug("Registered entity", extra={"entity": entity.name})

    def register_all(self, entities: Iterable[EntityDef]) -> None:
        for entity in entities:
            self.register(entity)

    def get(self, name: str) -> Optional[EntityDef]:
        return self._entities.get(name)

    def get_by_plural(self, plural_name: str) -> Optional[EntityDef]:
        """Look up by plural name, case-insensitively."""
        return self._by_plural.get(plural_name.lower())

    def all(self) -> list[EntityDef]:
        return list(self._entities.values())

    def table_spec(self, name: str) -> TableSpec:
        """Table layout of a registered entity.

        Raises:
            KeyError: If the entity is not registered
        """
        spec = self._tables.get(name)
        if spec is None:
            entity = self._entities.get(name)
            if entity is None:
                raise KeyError(f"Unknown entity '{name}'")
            spec = build_table_spec(entity)
            self._tables[name] = spec
        return spec

    def freeze(self) -> str:
        """Freeze the registry and compute the fingerprint.

        Returns:
            Fingerprint string in format 'sha256:<hash>'

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Entity registry is already frozen")
            canonical = json.dumps(
                [self._entities[name].to_dict() for name in sorted(self._entities)],
                sort_keys=True,
                separators=(",", ":"),
                default=str,
            )
            self._fingerprint = "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()
            self._frozen = True
            logger.info(
                "Entity registry frozen",
                extra={"entities": len(self._entities), "fingerprint": self._fingerprint},
            )
            return self._fingerprint

    def clear(self) -> None:
        """Remove every entity and unfreeze (test isolation)."""
        with self._lock:
            self._entities.clear()
            self._by_plural.clear()
            self._tables.clear()
            self._frozen = False
            self._fingerprint = None

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, name: object) -> bool:
        return name in self._entities
