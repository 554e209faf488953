"""
Bus module for the entity engine: how operations run and what they leave behind.

- Dispatcher: the fixed pipeline every operation goes through
- EventBus: in-process domain events
- SideEffectRunner: declared post-execution effects (events, notifications, webhooks)
- AuditLog: persistent record of every dispatch

Invariants:
    - Side effects and audit writes never change a dispatch result
    - Background work is awaited by drain() before shutdown
"""

from .events import DomainEvent, EventBus, EventSubscriber
from .audit import AuditEntry, AuditLog, AuditQuery
from .side_effects import SideEffectRunner
from .dispatch import DispatchResult, Dispatcher

__all__ = [
    "DomainEvent",
    "EventBus",
    "EventSubscriber",
    "AuditEntry",
    "AuditLog",
    "AuditQuery",
    "SideEffectRunner",
    "DispatchResult",
    "Dispatcher",
]
