"""In-process event bus for SystemEvents.

The gateway, the model client and the archive publish events here; the
audit subscriber registered in ``main`` persists them. Publishing only
enqueues, a single worker task delivers events in emission order.

Usage:
    from bustapaga.observability.events import emit, subscribe

    subscribe(audit_on_event)                                   # every event
    subscribe(on_failure, event_types=[EventType.ANALYSIS_FAILED])

    await emit(SystemEvent(event_type=EventType.PAYSLIP_STORED, payslip_id=p.id))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from bustapaga.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Queue-backed publisher with global and per-type subscribers."""

    def __init__(self) -> None:
        # None holds the handlers that receive every event
        self._handlers: dict[EventType | None, list[EventHandler]] = {}
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    # ── Subscriptions ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
        """Register ``handler`` for ``event_types``, or for everything when None."""
        keys: list[EventType | None] = [None] if event_types is None else list(event_types)
        for key in keys:
            self._handlers.setdefault(key, []).append(handler)
        logger.info(
            "Subscribed %s to %s",
            getattr(handler, "__name__", repr(handler)),
            "all events" if event_types is None else [k.value for k in keys if k is not None],
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        for handlers in self._handlers.values():
            while handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._handlers.get(None, []), *self._handlers.get(event_type, [])]

    # ── Publishing ───────────────────────────────────────────────────

    async def emit(self, event: SystemEvent) -> None:
        """Enqueue an event; the worker is started lazily on first use."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        await self._queue.put(event)
        logger.debug("Event queued: %s (payslip=%s)", event.event_type.value, event.payslip_id)

    async def deliver(self, event: SystemEvent) -> None:
        """Run every matching handler now, one after the other.

        A failing handler is logged and does not stop the others.
        """
        for handler in self.handlers_for(event.event_type):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for event %s",
                    getattr(handler, "__name__", repr(handler)),
                    event.event_type.value,
                )

    async def join(self) -> None:
        """Wait until every queued event has been delivered."""
        if self._queue is not None:
            await self._queue.join()

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the worker; a queue already served by a live worker is kept."""
        worker_alive = self._worker is not None and not self._worker.done()
        if self._queue is None or not worker_alive:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        logger.info("Event bus started with %d subscriptions", sum(len(h) for h in self._handlers.values()))

    async def stop(self) -> None:
        """Deliver what is still queued, then cancel the worker."""
        await self.join()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
        logger.info("Event bus stopped")

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def _run(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            event = await queue.get()
            try:
                await self.deliver(event)
            finally:
                queue.task_done()


bus = EventBus()


# Module-level shortcuts resolve ``bus`` at call time so tests can swap it.


def subscribe(handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
    bus.subscribe(handler, event_types)


def unsubscribe(handler: EventHandler) -> None:
    bus.unsubscribe(handler)


async def emit(event: SystemEvent) -> None:
    await bus.emit(event)


async def start_event_system() -> None:
    await bus.start()


async def stop_event_system() -> None:
    await bus.stop()
