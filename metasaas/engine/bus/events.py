"""
In-process domain event bus.

Operations publish DomainEvents through their execution context;
subscribers registered here react to them (notifications, follow-up
operations, integrations).

Invariants:
    - A subscriber on "*" receives every event
    - Subscribers for one event run concurrently
    - A failing subscriber never affects the publisher or other subscribers

How to change safely:
    - Subscriber handlers must be coroutines
    - Keep publish() non-raising; callers are inside operation execution
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass
class DomainEvent:
    """Something that happened to a record.

    Attributes:
        type: Event name, e.g. "task.created"
        payload: Event data
        timestamp: UTC time, set on publish when not given
    """

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


EventHandler = Callable[[DomainEvent], Awaitable[None]]


@dataclass(frozen=True)
class EventSubscriber:
    """A named handler for one event type (or "*")."""

    event_type: str
    name: str
    handler: EventHandler


class EventBus:
    """Fan-out of domain events to in-process subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventSubscriber]] = {}

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.setdefault(subscriber.event_type, []).append(subscriber)
        logger.debug(
            "Subscribed to events",
            extra={"event_type": subscriber.event_type, "subscriber": subscriber.name},
        )

    def subscribe_all(self, subscribers: list[EventSubscriber]) -> None:
        for subscriber in subscribers:
            self.subscribe(subscriber)

    async def publish(self, event: DomainEvent) -> None:
        """Deliver ``event`` to its exact-match and wildcard subscribers.

        Failures are logged and swallowed.
        """
        if event.timestamp is None:
            event.timestamp = datetime.now(timezone.utc)

        targets = list(self._subscribers.get(event.type, ()))
        if event.type != WILDCARD:
            targets.extend(self._subscribers.get(WILDCARD, ()))
        if not targets:
            return

        results = await asyncio.gather(
            *(subscriber.handler(event) for subscriber in targets),
            return_exceptions=True,
        )
        for subscriber, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Event subscriber failed: {result}",
                    extra={"event_type": event.type, "subscriber": subscriber.name},
                    exc_info=result,
                )

    def subscriber_count(self, event_type: Optional[str] = None) -> int:
        """Number of subscribers for ``event_type``, or in total."""
        if event_type is not None:
            return len(self._subscribers.get(event_type, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    def clear(self) -> None:
        self._subscribers.clear()
