"""
Operation registry.

Holds every operation the dispatcher can execute, compiled or
hand-written, keyed by id.

Invariants:
    - Operation ids are unique
    - Registry is mutable during startup, frozen before serving

How to change safely:
    - Register hand-written operations before freeze()
    - Use clear() only for test isolation
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from ..schema.registry import DuplicateRegistrationError, RegistryFrozenError
from .types import CompiledOperation

logger = logging.getLogger(__name__)


class OperationRegistry:
    """Registry of operations keyed by id.

    Thread-safety:
        Registration is thread-safe (uses internal lock).
    """

    def __init__(self) -> None:
        self._operations: dict[str, CompiledOperation] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, operation: CompiledOperation) -> None:
        """Register an operation.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the id is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register operation '{operation.id}': registry is frozen"
                )
            if operation.id in self._operations:
                raise DuplicateRegistrationError(
                    f'Operation "{operation.id}" is already registered. '
                    "Operation ids must be unique."
                )
            self._operations[operation.id] = operation
            logger.debug("Registered operation", extra={"operation_id": operation.id})

    def register_all(self, operations: Iterable[CompiledOperation]) -> None:
        for operation in operations:
            self.register(operation)

    def get(self, operation_id: str) -> Optional[CompiledOperation]:
        return self._operations.get(operation_id)

    def all(self) -> list[CompiledOperation]:
        return list(self._operations.values())

    def for_entity(self, entity_name: str) -> list[CompiledOperation]:
        """Operations whose id is prefixed by the lowercased entity name."""
        prefix = entity_name.lower() + "."
        return [op for op in self._operations.values() if op.id.startswith(prefix)]

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True
            logger.info("Operation registry frozen", extra={"operations": len(self._operations)})

    def clear(self) -> None:
        """Remove every operation and unfreeze (test isolation)."""
        with self._lock:
            self._operations.clear()
            self._frozen = False

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, operation_id: object) -> bool:
        return operation_id in self._operations
