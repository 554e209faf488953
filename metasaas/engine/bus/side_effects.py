"""
Declared side effects of operations.

Run by the dispatcher after an operation succeeds. A side effect can never
fail the operation that declared it: every failure is logged and dropped.

Supported types:
- emit_event: publish a domain event through the execution context
- notify: log a notification (delivery channels plug in here)
- webhook: POST the result as JSON to a URL, in a background task
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import httpx

from ..actions.types import ExecutionContext, SideEffect, SideEffectType
from .events import DomainEvent

logger = logging.getLogger(__name__)


class SideEffectRunner:
    """Executes side effects and owns the webhook HTTP client.

    Args:
        client: HTTP client used for webhooks (created lazily if None)
        timeout_seconds: Timeout for the lazily created client
        user_agent: User-Agent header for the lazily created client
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 10.0,
        user_agent: str = "metasaas-engine",
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout_seconds
        self._user_agent = user_agent
        self._tasks: set[asyncio.Task] = set()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent},
            )
        return self._client

    async def run(
        self,
        effects: Sequence[SideEffect],
        operation_id: str,
        result: Any,
        context: ExecutionContext,
    ) -> None:
        """Process ``effects`` in order; never raises."""
        for effect in effects:
            try:
                if effect.type == SideEffectType.EMIT_EVENT:
                    await self._emit(effect, operation_id, result, context)
                elif effect.type == SideEffectType.NOTIFY:
                    context.logger.info(
                        "Notification",
                        extra={
                            "channel": effect.config.get("channel", "log"),
                            "notification": effect.config.get(
                                "message", f"Operation {operation_id} completed"
                            ),
                        },
                    )
                elif effect.type == SideEffectType.WEBHOOK:
                    self._schedule_webhook(effect, operation_id, result, context)
                else:
                    context.logger.warning(
                        "Unknown side effect type", extra={"side_effect": str(effect.type)}
                    )
            except Exception as e:
                context.logger.error(
                    f"Side effect failed: {e}",
                    extra={"side_effect": effect.type.value},
                    exc_info=True,
                )

    async def _emit(
        self,
        effect: SideEffect,
        operation_id: str,
        result: Any,
        context: ExecutionContext,
    ) -> None:
        payload = {"operation_id": operation_id, "result": result}
        payload.update(effect.config.get("payload") or {})
        await context.emit(
            DomainEvent(
                type=effect.config.get("event_type", f"{operation_id}.side_effect"),
                payload=payload,
            )
        )

    def _schedule_webhook(
        self,
        effect: SideEffect,
        operation_id: str,
        result: Any,
        context: ExecutionContext,
    ) -> None:
        url = effect.config.get("url")
        if not url:
            context.logger.warning("Webhook side effect has no url")
            return
        body = {
            "operation_id": operation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "result": result,
        }
        task = asyncio.create_task(self._deliver(url, body, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, url: str, body: dict[str, Any], context: ExecutionContext) -> None:
        try:
            response = await self._get_client().post(
                url,
                content=json.dumps(body, default=str),
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            context.logger.debug(
                "Webhook delivered", extra={"url": url, "status_code": response.status_code}
            )
        except Exception as e:
            context.logger.error(f"Webhook delivery failed: {e}", extra={"url": url})

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight webhook delivery."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
