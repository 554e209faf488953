"""
Unit tests for the event bus and side effects.

Tests cover:
- Exact-match and wildcard subscribers
- Failing subscribers are isolated
- emit_event, notify and webhook side effects
- Webhook delivery failures never propagate
"""

import json
import logging

import httpx
import pytest

from metasaas.engine.actions.types import Caller, ExecutionContext, SideEffect, SideEffectType
from metasaas.engine.bus.dispatch import OperationLogger
from metasaas.engine.bus.events import DomainEvent, EventBus, EventSubscriber
from metasaas.engine.bus.side_effects import SideEffectRunner


def _collector(bucket):
    async def handler(event):
        bucket.append(event)

    return handler


class TestEventBus:
    """Tests for EventBus."""

    @pytest.mark.asyncio
    async def test_exact_and_wildcard(self):
        bus = EventBus()
        created, everything, updated = [], [], []
        bus.subscribe(EventSubscriber("task.created", "created", _collector(created)))
        bus.subscribe(EventSubscriber("task.updated", "updated", _collector(updated)))
        bus.subscribe(EventSubscriber("*", "audit", _collector(everything)))

        await bus.publish(DomainEvent("task.created", {"id": "1"}))

        assert [e.type for e in created] == ["task.created"]
        assert [e.type for e in everything] == ["task.created"]
        assert updated == []
        assert created[0].timestamp is not None

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self):
        """One subscriber raising does not stop the others or the publisher."""
        bus = EventBus()
        received = []

        async def broken(event):
            raise RuntimeError("boom")

        bus.subscribe_all(
            [
                EventSubscriber("task.created", "broken", broken),
                EventSubscriber("task.created", "ok", _collector(received)),
            ]
        )

        await bus.publish(DomainEvent("task.created"))
        assert len(received) == 1

    def test_subscriber_count(self):
        bus = EventBus()
        bus.subscribe(EventSubscriber("a", "one", _collector([])))
        bus.subscribe(EventSubscriber("a", "two", _collector([])))
        bus.subscribe(EventSubscriber("*", "three", _collector([])))

        assert bus.subscriber_count("a") == 2
        assert bus.subscriber_count() == 3
        bus.clear()
        assert bus.subscriber_count() == 0


class TestSideEffects:
    """Tests for SideEffectRunner."""

    @pytest.fixture
    def emitted(self):
        return []

    @pytest.fixture
    def context(self, emitted):
        caller = Caller(user_id="u1", tenant_id="t1")

        async def emit(event):
            emitted.append(event)

        return ExecutionContext(
            caller=caller,
            db=None,
            emit=emit,
            logger=OperationLogger(logging.getLogger("test"), "deal.close", caller),
        )

    @pytest.mark.asyncio
    async def test_emit_event(self, context, emitted):
        runner = SideEffectRunner()
        await runner.run(
            [
                SideEffect(SideEffectType.EMIT_EVENT),
                SideEffect(
                    SideEffectType.EMIT_EVENT,
                    {"event_type": "deal.won", "payload": {"source": "crm"}},
                ),
            ],
            "deal.close",
            {"id": "d1"},
            context,
        )

        assert [e.type for e in emitted] == ["deal.close.side_effect", "deal.won"]
        assert emitted[1].payload == {
            "operation_id": "deal.close",
            "result": {"id": "d1"},
            "source": "crm",
        }

    @pytest.mark.asyncio
    async def test_notify_logs(self, context, caplog):
        runner = SideEffectRunner()
        with caplog.at_level(logging.INFO, logger="test"):
            await runner.run(
                [SideEffect(SideEffectType.NOTIFY, {"channel": "email", "message": "Deal closed"})],
                "deal.close",
                None,
                context,
            )

        record = next(r for r in caplog.records if "Notification" in r.getMessage())
        assert record.channel == "email"
        assert record.notification == "Deal closed"
        assert record.operation_id == "deal.close"

    @pytest.mark.asyncio
    async def test_webhook_delivered(self, context):
        """The result is POSTed as JSON in the background."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        runner = SideEffectRunner(client=client)

        await runner.run(
            [SideEffect(SideEffectType.WEBHOOK, {"url": "https://hooks.example.com/deal"})],
            "deal.close",
            {"id": "d1"},
            context,
        )
        await runner.drain()

        assert len(requests) == 1
        body = json.loads(requests[0].content)
        assert body["operation_id"] == "deal.close"
        assert body["result"] == {"id": "d1"}
        assert "timestamp" in body
        assert requests[0].headers["content-type"] == "application/json"

        await runner.close()
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_webhook_failure_swallowed(self, context, emitted):
        """A failing endpoint is logged and later effects still run."""

        def handler(request):
            return httpx.Response(500)

        runner = SideEffectRunner(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        await runner.run(
            [
                SideEffect(SideEffectType.WEBHOOK, {"url": "https://hooks.example.com/x"}),
                SideEffect(SideEffectType.EMIT_EVENT),
            ],
            "deal.close",
            {},
            context,
        )
        await runner.drain()

        assert runner.pending == 0
        assert len(emitted) == 1

    @pytest.mark.asyncio
    async def test_webhook_without_url(self, context):
        runner = SideEffectRunner()
        await runner.run([SideEffect(SideEffectType.WEBHOOK)], "deal.close", {}, context)
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_webhook_invalid_url_logged(self, context, caplog):
        """A malformed url never reaches the transport and is logged."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(204)

        runner = SideEffectRunner(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with caplog.at_level(logging.ERROR, logger="test"):
            await runner.run(
                [SideEffect(SideEffectType.WEBHOOK, {"url": "http://[::1"})],
                "deal.close",
                {},
                context,
            )
            await runner.drain()

        assert requests == []
        assert runner.pending == 0
        record = next(r for r in caplog.records if "Webhook delivery failed" in r.getMessage())
        assert record.url == "http://[::1"
        await runner.close()
