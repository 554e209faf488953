"""
Application state.

AppState is the composition root: it owns every registry and service the
engine needs and wires them together. There are no process-wide
singletons; tests build a fresh AppState (or call clear()) for isolation.

Invariants:
    - Every registered entity has its five compiled operations registered
    - The dispatcher, data access and audit log share one Database

How to change safely:
    - Register hand-written operations through bootstrap() so duplicates
      are caught against the compiled ones
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .actions.compiler import compile_entity
from .actions.registry import OperationRegistry
from .actions.types import CompiledOperation, PermissionRule
from .bus.audit import AuditLog
from .bus.dispatch import Dispatcher
from .bus.events import EventBus, EventSubscriber
from .bus.side_effects import SideEffectRunner
from .config import EngineConfig
from .schema.registry import EntityRegistry
from .schema.types import EntityDef
from .store.client import TenantDataAccess
from .store.database import Database

logger = logging.getLogger(__name__)


class AppState:
    """Everything one running engine holds.

    Args:
        config: Engine configuration (defaults if None)
        database: Database to use instead of the configured one
        side_effects: Side-effect runner to use instead of a configured one
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        database: Optional[Database] = None,
        side_effects: Optional[SideEffectRunner] = None,
    ) -> None:
        self.config = config or EngineConfig()
        storage = self.config.storage
        self.database = database or Database(
            storage.database_path,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
            cache_size_pages=storage.cache_size_pages,
        )
        self.entities = EntityRegistry()
        self.operations = OperationRegistry()
        self.events = EventBus()
        self.audit = AuditLog(
            self.database,
            enabled=self.config.audit.enabled,
            max_input_chars=self.config.audit.max_input_chars,
        )
        self.side_effects = side_effects or SideEffectRunner(
            timeout_seconds=self.config.webhooks.timeout_seconds,
            user_agent=self.config.webhooks.user_agent,
        )
        self.dispatcher = Dispatcher(
            operations=self.operations,
            data_access=self.data_access,
            events=self.events,
            audit=self.audit,
            side_effects=self.side_effects,
        )

    def data_access(self, tenant_id: str) -> TenantDataAccess:
        """Data access handle scoped to ``tenant_id``."""
        return TenantDataAccess(self.database, self.entities, tenant_id)

    def bootstrap(
        self,
        entities: Iterable[EntityDef],
        operations: Iterable[CompiledOperation] = (),
        subscribers: Iterable[EventSubscriber] = (),
        permissions: Optional[dict[str, list[PermissionRule]]] = None,
    ) -> None:
        """Register entities, their compiled operations, extra operations
        and event subscribers.

        Args:
            entities: Entity declarations
            operations: Hand-written operations
            subscribers: Event subscribers
            permissions: Rules per entity name for its compiled operations

        Raises:
            DuplicateRegistrationError: On a duplicate entity or operation id
        """
        permissions = permissions or {}
        count = 0
        for entity in entities:
            self.entities.register(entity)
            self.operations.register_all(compile_entity(entity, permissions.get(entity.name)))
            count += 1
        self.operations.register_all(operations)
        self.events.subscribe_all(list(subscribers))

        logger.info(
            "Application state bootstrapped",
            extra={
                "entities": count,
                "operations": len(self.operations),
                "subscribers": self.events.subscriber_count(),
            },
        )

    def freeze(self) -> str:
        """Freeze both registries; returns the entity fingerprint."""
        self.operations.freeze()
        return self.entities.freeze()

    def clear(self) -> None:
        """Reset registries and subscribers (test isolation)."""
        self.entities.clear()
        self.operations.clear()
        self.events.clear()
