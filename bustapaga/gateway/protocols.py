"""Protocol interfaces for the AI gateway.

The gateway capabilities and the model client behind them are structural
types, so any of them can be replaced by a canned double in tests.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from bustapaga.gateway.streaming import ChatStream
    from bustapaga.schemas.chat import Attachment, ChatContext, ChatMessage
    from bustapaga.schemas.payslip import Payslip


@runtime_checkable
class GenerativeModel(Protocol):
    """A text-generation backend (Gemini, or a canned double)."""

    async def generate(
        self,
        contents: list[dict[str, Any]],
        *,
        system_instruction: str | None = None,
        response_schema: dict[str, Any] | None = None,
        temperature: float | None = None,
    ) -> str: ...

    def generate_stream(
        self,
        contents: list[dict[str, Any]],
        *,
        system_instruction: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


@runtime_checkable
class Analyzer(Protocol):
    async def analyze(self, attachment: Attachment) -> Payslip: ...


@runtime_checkable
class Comparator(Protocol):
    async def compare(self, first: Payslip, second: Payslip) -> str: ...


@runtime_checkable
class Summarizer(Protocol):
    async def summarize(self, payslip: Payslip) -> str: ...


@runtime_checkable
class ChatResponder(Protocol):
    async def chat(self, history: Sequence[ChatMessage], question: str, context: ChatContext) -> str: ...

    def chat_stream(self, history: Sequence[ChatMessage], question: str, context: ChatContext) -> ChatStream: ...
