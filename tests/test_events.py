"""Tests for the event pub/sub and the audit subscriber."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bustapaga.observability import events
from bustapaga.observability.audit import audit_on_event
from bustapaga.schemas.events import EventType, SystemEvent


@pytest.fixture(autouse=True)
def fresh_bus():
    with patch.object(events, "bus", events.EventBus()) as bus:
        yield bus


def _event(event_type: EventType = EventType.PAYSLIP_STORED) -> SystemEvent:
    return SystemEvent(event_type=event_type, payslip_id="payslip-2024-03", data={"period": "03/2024"})


class TestDispatch:
    @pytest.mark.asyncio()
    async def test_global_subscriber_receives_all(self):
        handler = AsyncMock(__name__="handler")
        events.subscribe(handler)

        await events.bus.deliver(_event())
        await events.bus.deliver(_event(EventType.CHAT_ANSWERED))

        assert handler.await_count == 2

    @pytest.mark.asyncio()
    async def test_typed_subscriber_filters(self):
        handler = AsyncMock(__name__="handler")
        events.subscribe(handler, event_types=[EventType.ANALYSIS_FAILED])

        await events.bus.deliver(_event())
        await events.bus.deliver(_event(EventType.ANALYSIS_FAILED))

        handler.assert_awaited_once()
        assert handler.call_args.args[0].event_type is EventType.ANALYSIS_FAILED

    @pytest.mark.asyncio()
    async def test_failing_handler_isolated(self):
        failing = AsyncMock(__name__="failing", side_effect=RuntimeError("boom"))
        healthy = AsyncMock(__name__="healthy")
        events.subscribe(failing)
        events.subscribe(healthy)

        await events.bus.deliver(_event())

        healthy.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_unsubscribe(self):
        handler = AsyncMock(__name__="handler")
        events.subscribe(handler)
        events.unsubscribe(handler)
        await events.bus.deliver(_event())
        handler.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_queued_delivery(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(handler)
        await events.start_event_system()
        try:
            await events.emit(_event())
            await asyncio.wait_for(events.bus.join(), timeout=1)
        finally:
            await events.stop_event_system()

        assert [e.payslip_id for e in received] == ["payslip-2024-03"]

    @pytest.mark.asyncio()
    async def test_start_after_lazy_emit_keeps_delivering(self):
        received: list[EventType] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event.event_type)

        events.subscribe(handler)
        await events.emit(_event(EventType.ANALYSIS_STARTED))
        await events.start_event_system()
        await events.emit(_event(EventType.ANALYSIS_COMPLETED))
        await asyncio.wait_for(events.stop_event_system(), timeout=1)

        assert received == [EventType.ANALYSIS_STARTED, EventType.ANALYSIS_COMPLETED]

    @pytest.mark.asyncio()
    async def test_delivery_keeps_emission_order(self):
        received: list[EventType] = []

        async def handler(event: SystemEvent) -> None:
            await asyncio.sleep(0)
            received.append(event.event_type)

        events.subscribe(handler)
        order = [EventType.ANALYSIS_STARTED, EventType.ANALYSIS_COMPLETED, EventType.PAYSLIP_STORED]
        for event_type in order:
            await events.emit(_event(event_type))
        await asyncio.wait_for(events.bus.stop(), timeout=1)

        assert received == order


class TestAuditSubscriber:
    @pytest.mark.asyncio()
    async def test_writes_audit_row(self):
        session = MagicMock()
        session.commit = AsyncMock()

        @asynccontextmanager
        async def factory():
            yield session

        event = _event()
        with patch("bustapaga.observability.audit.async_session_factory", factory):
            await audit_on_event(event)

        row = session.add.call_args.args[0]
        assert row.event_type == "payslip.stored"
        assert row.payslip_id == "payslip-2024-03"
        assert row.event_id == str(event.id)
        assert row.data == {"period": "03/2024"}
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_failure_swallowed(self):
        session = MagicMock()
        session.commit = AsyncMock(side_effect=RuntimeError("database is locked"))

        @asynccontextmanager
        async def factory():
            yield session

        with patch("bustapaga.observability.audit.async_session_factory", factory):
            await audit_on_event(_event())
