"""Streaming chat answers as an async iterator with an explicit lifecycle.

A ChatStream moves PENDING -> STREAMING -> COMPLETED | FAILED | CANCELLED.
Iterating yields text chunks; ``aclose()`` is the cancellation handle and
aborts the in-flight HTTP stream. Done callbacks run exactly once.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

from bustapaga.gateway.errors import GatewayError
from bustapaga.observability.events import emit
from bustapaga.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

DoneCallback = Callable[["ChatStream"], Awaitable[None]]


class StreamState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = frozenset({StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED})

_FINISH_EVENTS = {
    StreamState.COMPLETED: EventType.CHAT_STREAM_COMPLETED,
    StreamState.FAILED: EventType.CHAT_STREAM_FAILED,
    StreamState.CANCELLED: EventType.CHAT_STREAM_CANCELLED,
}


class ChatStream:
    """Incremental chat answer.

    Usage:
        async with gateway.chat_stream(history, question, context) as stream:
            async for chunk in stream:
                ...
        stream.text  # full answer once completed
    """

    def __init__(self, source: AsyncIterator[str]) -> None:
        self._source = source
        self._chunks: list[str] = []
        self._callbacks: list[DoneCallback] = []
        self.state = StreamState.PENDING
        self.error: GatewayError | None = None

    # ── Introspection ────────────────────────────────────────────────

    @property
    def text(self) -> str:
        """Everything received so far."""
        return "".join(self._chunks)

    @property
    def started(self) -> bool:
        return self.state is not StreamState.PENDING

    @property
    def done(self) -> bool:
        return self.state in _TERMINAL

    def add_done_callback(self, callback: DoneCallback) -> None:
        """Run ``callback(stream)`` once the stream reaches a terminal state."""
        self._callbacks.append(callback)

    # ── Async iteration ──────────────────────────────────────────────

    def __aiter__(self) -> ChatStream:
        return self

    async def __anext__(self) -> str:
        if self.done:
            raise StopAsyncIteration

        if self.state is StreamState.PENDING:
            self.state = StreamState.STREAMING
            await emit(SystemEvent(
                event_type=EventType.CHAT_STREAM_STARTED,
                source_module="gateway.streaming",
            ))

        try:
            chunk = await anext(self._source)
        except StopAsyncIteration:
            await self._finish(StreamState.COMPLETED)
            raise
        except GatewayError as exc:
            self.error = exc
            await self._finish(StreamState.FAILED)
            raise
        except Exception as exc:
            logger.exception("Unexpected failure while streaming chat answer")
            self.error = GatewayError(f"Chat stream failed: {exc}")
            await self._finish(StreamState.FAILED)
            raise self.error from exc

        self._chunks.append(chunk)
        return chunk

    async def collect(self) -> str:
        """Drain the stream and return the full answer."""
        async for _ in self:
            pass
        return self.text

    # ── Cancellation ─────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Cancel the stream if still running; no-op once finished."""
        if self.done:
            return
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()
        await self._finish(StreamState.CANCELLED)

    async def __aenter__(self) -> ChatStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ── Internals ────────────────────────────────────────────────────

    async def _finish(self, state: StreamState) -> None:
        self.state = state
        data: dict[str, object] = {"chunks": len(self._chunks), "total_chars": len(self.text)}
        if self.error is not None:
            data["error"] = str(self.error)
        await emit(SystemEvent(
            event_type=_FINISH_EVENTS[state],
            data=data,
            source_module="gateway.streaming",
        ))
        logger.info("Chat stream %s after %d chunks", state.value, len(self._chunks))

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            await callback(self)
