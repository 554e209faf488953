"""
Dispatch pipeline.

The single entry point through which every caller (UI, API, agent,
scheduler) runs an operation. Stages run in a fixed order and each one
short-circuits on failure:

    1. Lookup       unknown id -> not_found
    2. Validate     input model -> validation (with field errors)
    3. Authorize    permission rules -> permission
    4. Context      tenant-scoped data access, emitter, logger
    5. Execute      before hook -> execute -> after hook
    6. Side effects declared effects, failures logged only
    7. Audit        timed, written in the background

Invariants:
    - dispatch() never raises; every outcome is a DispatchResult
    - Validation and authorization complete before any business logic runs
    - Unknown errors are logged in full and surfaced with a generic message
    - Every dispatch, successful or not, is audited

How to change safely:
    - Do not reorder stages; hooks rely on running after authorization
    - New error classes must fit the closed ErrorType taxonomy
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, MutableMapping, Optional

from ..actions.errors import (
    GENERIC_ERROR_MESSAGE,
    EngineError,
    ErrorType,
    OperationNotFoundError,
    classify_error,
)
from ..actions.permissions import check_permission
from ..actions.registry import OperationRegistry
from ..actions.types import Caller, DataAccess, ExecutionContext
from ..actions.validation import validate_input
from .audit import AuditEntry, AuditLog
from .events import DomainEvent, EventBus
from .side_effects import SideEffectRunner

logger = logging.getLogger(__name__)

DataAccessFactory = Callable[[str], DataAccess]


class OperationLogger(logging.LoggerAdapter):
    """Logger adapter tagging records with the operation and caller.

    Extra fields passed at the call site are merged with the adapter's own.
    """

    def __init__(self, base: logging.Logger, operation_id: str, caller: Caller) -> None:
        super().__init__(
            base,
            {
                "operation_id": operation_id,
                "tenant_id": caller.tenant_id,
                "user_id": caller.user_id,
            },
        )

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return f"[operation:{self.extra['operation_id']}] {msg}", kwargs


@dataclass
class DispatchResult:
    """Outcome of one dispatch.

    Attributes:
        success: Whether the operation completed
        data: Operation result on success
        error: Caller-safe message on failure
        error_type: Failure category
        details: Structured, caller-safe failure context
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any) -> DispatchResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: BaseException) -> DispatchResult:
        error_type = classify_error(error)
        if error_type == ErrorType.UNKNOWN or not isinstance(error, EngineError):
            return cls(success=False, error=GENERIC_ERROR_MESSAGE, error_type=ErrorType.UNKNOWN)
        return cls(
            success=False,
            error=error.message,
            error_type=error_type,
            details=dict(error.details),
        )

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        result: dict[str, Any] = {
            "success": False,
            "error": self.error,
            "error_type": self.error_type.value if self.error_type else None,
        }
        if self.details:
            result["details"] = self.details
        return result


class Dispatcher:
    """Runs operations through the pipeline.

    Args:
        operations: Registry operations are looked up in
        data_access: Builds a data access handle for a tenant id
        events: Bus domain events are published to
        audit: Audit log (None disables auditing)
        side_effects: Side-effect runner (a default one is created if None)
    """

    def __init__(
        self,
        operations: OperationRegistry,
        data_access: DataAccessFactory,
        events: EventBus,
        audit: Optional[AuditLog] = None,
        side_effects: Optional[SideEffectRunner] = None,
    ) -> None:
        self.operations = operations
        self.data_access = data_access
        self.events = events
        self.audit = audit
        self.side_effects = side_effects or SideEffectRunner()

    def _emitter(self, log: OperationLogger) -> Callable[[DomainEvent], Any]:
        async def emit(event: DomainEvent) -> None:
            log.info("Domain event emitted", extra={"event_type": event.type})
            await self.events.publish(event)

        return emit

    async def dispatch(self, operation_id: str, raw_input: Any, caller: Caller) -> DispatchResult:
        """Run ``operation_id`` with ``raw_input`` on behalf of ``caller``.

        Args:
            operation_id: Operation id, e.g. "task.create"
            raw_input: Untrusted input
            caller: Authenticated caller

        Returns:
            DispatchResult describing success or the classified failure
        """
        start = time.perf_counter()
        log = OperationLogger(logger, operation_id, caller)

        try:
            operation = self.operations.get(operation_id)
            if operation is None:
                raise OperationNotFoundError(operation_id)

            data = validate_input(operation.input_model, raw_input, operation_id)
            check_permission(operation, caller)

            context = ExecutionContext(
                caller=caller,
                db=self.data_access(caller.tenant_id),
                emit=self._emitter(log),
                logger=log,
            )

            if operation.hooks.before is not None:
                data = await operation.hooks.before(data, context)
            result = await operation.execute(data, context)
            if operation.hooks.after is not None:
                result = await operation.hooks.after(result, data, context)

            if operation.side_effects:
                await self.side_effects.run(operation.side_effects, operation_id, result, context)

        except Exception as e:
            duration_ms = _elapsed_ms(start)
            outcome = DispatchResult.failure(e)
            if outcome.error_type == ErrorType.UNKNOWN:
                log.error(
                    f"Operation failed: {e}",
                    extra={"duration_ms": duration_ms, "success": False},
                    exc_info=True,
                )
            else:
                log.info(
                    f"Operation rejected: {outcome.error}",
                    extra={
                        "duration_ms": duration_ms,
                        "success": False,
                        "error_type": outcome.error_type.value,
                    },
                )
            self._audit(caller, operation_id, raw_input, False, duration_ms, str(e))
            return outcome

        duration_ms = _elapsed_ms(start)
        log.info("Operation executed", extra={"duration_ms": duration_ms, "success": True})
        self._audit(caller, operation_id, raw_input, True, duration_ms, None)
        return DispatchResult.ok(result)

    def _audit(
        self,
        caller: Caller,
        operation_id: str,
        raw_input: Any,
        success: bool,
        duration_ms: float,
        error: Optional[str],
    ) -> None:
        if self.audit is None:
            return
        self.audit.record(
            AuditEntry(
                tenant_id=caller.tenant_id,
                user_id=caller.user_id,
                operation_id=operation_id,
                success=success,
                duration_ms=duration_ms,
                input=raw_input,
                error=error,
            )
        )

    async def drain(self) -> None:
        """Wait for background audit writes and webhook deliveries."""
        pending = [self.side_effects.drain()]
        if self.audit is not None:
            pending.append(self.audit.drain())
        await asyncio.gather(*pending)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
