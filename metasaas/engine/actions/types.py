"""
Operation, caller and execution-context types.

An operation is the only way any caller affects state. Compiled operations
come from the operation compiler; hand-written ones are built directly
from CompiledOperation.

Invariants:
    - Operation ids have the form "entity.verb"
    - An operation is immutable once built
    - ExecutionContext is created per dispatch and never shared

How to change safely:
    - Add optional attributes with defaults so hand-written operations keep
      constructing
    - Keep describe() JSON-safe; external adapters serialize it directly
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    runtime_checkable,
)

from pydantic import BaseModel

if TYPE_CHECKING:
    from ..bus.events import DomainEvent


class CallerType(Enum):
    """Kinds of callers that reach the dispatch pipeline."""

    HUMAN = "human"
    AI_AGENT = "ai-agent"
    SYSTEM = "system"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class Caller:
    """Authenticated identity supplied by the authentication layer.

    Attributes:
        user_id: User (or agent/system) identifier
        tenant_id: Tenant every data access is scoped to
        roles: Role names held by the caller
        type: Caller kind
    """

    user_id: str
    tenant_id: str
    roles: tuple[str, ...] = ()
    type: CallerType = CallerType.HUMAN

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("Caller user_id cannot be empty")
        if not self.tenant_id:
            raise ValueError("Caller tenant_id cannot be empty")


class Effect(Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class PermissionRule:
    """One permission rule, evaluated first-match-wins.

    Empty condition sets match every caller.

    Attributes:
        effect: Decision when the rule matches
        caller_types: Caller kinds the rule applies to
        roles: Roles of which the caller must hold at least one
        ownership: Only "any" is supported; ownership-scoped rules are
            rejected so they cannot silently grant access
    """

    effect: Effect
    caller_types: tuple[CallerType, ...] = ()
    roles: tuple[str, ...] = ()
    ownership: str = "any"

    def __post_init__(self) -> None:
        if self.ownership != "any":
            raise ValueError(
                f"Unsupported ownership condition '{self.ownership}': records carry no owner, "
                "so only 'any' can be evaluated"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PermissionRule:
        return cls(
            effect=Effect(data["effect"]),
            caller_types=tuple(CallerType(t) for t in data.get("callerTypes", ())),
            roles=tuple(data.get("roles", ())),
            ownership=data.get("ownership", "any"),
        )


ALLOW_ALL = PermissionRule(effect=Effect.ALLOW)


class SideEffectType(Enum):
    EMIT_EVENT = "emit_event"
    NOTIFY = "notify"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class SideEffect:
    """Post-execution effect declared on an operation.

    Config keys by type:
        emit_event: event_type (default "<operation>.side_effect"), payload
        notify: channel (default "log"), message
        webhook: url
    """

    type: SideEffectType
    config: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class OperationExample:
    description: str
    input: dict[str, Any] = field(hash=False)
    natural_language: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result = {"description": self.description, "input": dict(self.input)}
        if self.natural_language:
            result["natural_language"] = self.natural_language
        return result


@runtime_checkable
class DataAccess(Protocol):
    """Tenant-scoped data access handle.

    Every call is implicitly scoped to the tenant the handle was built for.
    """

    tenant_id: str

    async def find_many(
        self,
        entity: str,
        where: Optional[dict[str, Any]] = None,
        order_by: Optional[dict[str, str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        search: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        ...

    async def find_by_id(self, entity: str, record_id: str) -> Optional[dict[str, Any]]:
        ...

    async def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        ...

    async def update(self, entity: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        ...

    async def delete(self, entity: str, record_id: str) -> bool:
        ...

    async def count(
        self,
        entity: str,
        where: Optional[dict[str, Any]] = None,
        search: Optional[dict[str, Any]] = None,
    ) -> int:
        ...


@runtime_checkable
class EventEmitter(Protocol):
    """Anything domain events can be published to."""

    async def publish(self, event: DomainEvent) -> None:
        ...


@dataclass
class ExecutionContext:
    """Everything an operation may touch during one dispatch.

    Attributes:
        caller: Who is executing
        db: Data access scoped to the caller's tenant
        emit: Publishes a domain event
        logger: Logger tagged with the operation, tenant and user
    """

    caller: Caller
    db: DataAccess
    emit: Callable[[DomainEvent], Awaitable[None]]
    logger: logging.LoggerAdapter


Execute = Callable[[Any, ExecutionContext], Awaitable[Any]]
BeforeExecute = Callable[[Any, ExecutionContext], Awaitable[Any]]
AfterExecute = Callable[[Any, Any, ExecutionContext], Awaitable[Any]]


@dataclass(frozen=True)
class OperationHooks:
    """Optional callback slots around execute.

    Both run after authorization. ``before`` receives ``(input, context)``
    and returns the input passed to execute; ``after`` receives
    ``(result, input, context)`` and returns the result. Raising aborts the
    dispatch.
    """

    before: Optional[BeforeExecute] = None
    after: Optional[AfterExecute] = None


@dataclass(frozen=True)
class CompiledOperation:
    """A named, typed, permissioned unit of work.

    Attributes:
        id: "entity.verb" identifier, unique in a registry
        name: Display name
        description: What the operation does, for adapters and agents
        input_model: pydantic model raw input is validated against
        output_model: pydantic model describing the result
        execute: Coroutine performing the work
        permissions: Rules evaluated first-match-wins, default deny (empty denies everyone)
        idempotent: Whether repeating the call has no further effect
        affects_entities: Entities whose records the operation changes
        side_effects: Effects run after a successful execute
        examples: Example inputs for adapters and agents
        hooks: Optional before/after callbacks
    """

    id: str
    name: str
    description: str
    input_model: type[BaseModel]
    output_model: Optional[type[BaseModel]]
    execute: Execute
    permissions: tuple[PermissionRule, ...] = ()
    idempotent: bool = False
    affects_entities: tuple[str, ...] = ()
    side_effects: tuple[SideEffect, ...] = ()
    examples: tuple[OperationExample, ...] = ()
    hooks: OperationHooks = field(default_factory=OperationHooks)

    def __post_init__(self) -> None:
        if "." not in self.id:
            raise ValueError(f"Operation id '{self.id}' must have the form 'entity.verb'")

    def describe(self) -> dict[str, Any]:
        """JSON-safe description for protocol adapters."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_model.model_json_schema(by_alias=True),
            "output_schema": (
                self.output_model.model_json_schema(by_alias=True) if self.output_model else None
            ),
            "idempotent": self.idempotent,
            "affects_entities": list(self.affects_entities),
            "examples": [example.to_dict() for example in self.examples],
        }
