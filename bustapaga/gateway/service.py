"""AI gateway: the four request/response adapters around the model.

Each operation builds its prompt, optionally attaches an encoded file,
makes exactly one model call and maps the returned text:

    analyze    -> Payslip (structured output, parsed and validated)
    compare    -> free text
    summarize  -> free text
    chat       -> free text, or a ChatStream of chunks

No retries and no partial results: a failure surfaces as a GatewayError.
The gateway holds no mutable state, so concurrent calls are safe.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from bustapaga.gateway.errors import EmptyResponseError, GatewayError, InvalidExtractionError
from bustapaga.gateway.parsing import parse_model_json
from bustapaga.gateway.prompts import (
    ANALYSIS_PROMPT,
    CHAT_ARCHIVE_BLOCK,
    CHAT_COMPARE_BLOCK,
    CHAT_FOCUS_BLOCK,
    CHAT_SYSTEM_PROMPT,
    archive_rows,
    comparison_prompt,
    period_label,
    summary_prompt,
)
from bustapaga.gateway.protocols import GenerativeModel
from bustapaga.gateway.reference import tax_tables_block
from bustapaga.gateway.schema import PAYSLIP_RESPONSE_SCHEMA
from bustapaga.gateway.streaming import ChatStream
from bustapaga.observability.events import emit
from bustapaga.schemas.chat import Attachment, ChatContext, ChatMessage
from bustapaga.schemas.events import EventType, SystemEvent
from bustapaga.schemas.payslip import Payslip, new_payslip_id

logger = logging.getLogger(__name__)

Content = dict[str, Any]


class PayslipGateway:
    """Analyzer, Comparator, Summarizer and ChatResponder over one model client."""

    def __init__(self, model: GenerativeModel) -> None:
        self._model = model

    # ── Analyze ──────────────────────────────────────────────────────

    async def analyze(self, attachment: Attachment) -> Payslip:
        """Extract a Payslip from an encoded image or PDF.

        The record always gets a fresh local identity, whatever the model
        put in ``id``.

        Raises:
            InvalidExtractionError: The output is empty or not a complete Payslip.
            TransportError: From the model client.
        """
        await emit(SystemEvent(
            event_type=EventType.ANALYSIS_STARTED,
            data={"mime_type": attachment.mime_type, "size_bytes": attachment.size_bytes},
            source_module="gateway.service",
        ))

        contents: list[Content] = [
            {"role": "user", "parts": [{"text": ANALYSIS_PROMPT}, attachment.to_part()]},
        ]
        try:
            try:
                raw = await self._model.generate(contents, response_schema=PAYSLIP_RESPONSE_SCHEMA)
            except EmptyResponseError as exc:
                # No text is an unusable extraction, same as unparseable text
                raise InvalidExtractionError(str(exc), raw_output="") from exc
            payslip = parse_model_json(raw, Payslip)
        except InvalidExtractionError as exc:
            logger.error("Analysis output is not a valid payslip: %s", exc)
            logger.debug("Raw analysis output: %s", exc.raw_output)
            await self._emit_analysis_failed(exc, attachment)
            raise
        except GatewayError as exc:
            logger.error("Analysis request failed: %s", exc)
            await self._emit_analysis_failed(exc, attachment)
            raise

        payslip = payslip.model_copy(update={"id": new_payslip_id()})

        await emit(SystemEvent(
            event_type=EventType.ANALYSIS_COMPLETED,
            payslip_id=payslip.id,
            data={
                "period": f"{payslip.period.month:02d}/{payslip.period.year}",
                "income_items": len(payslip.income_items),
                "deduction_items": len(payslip.deduction_items),
            },
            source_module="gateway.service",
        ))
        logger.info("Payslip %s extracted (%s)", payslip.id, period_label(payslip))
        return payslip

    async def _emit_analysis_failed(self, exc: GatewayError, attachment: Attachment) -> None:
        await emit(SystemEvent(
            event_type=EventType.ANALYSIS_FAILED,
            data={"error": type(exc).__name__, "detail": str(exc)[:500], "mime_type": attachment.mime_type},
            source_module="gateway.service",
        ))

    # ── Compare / summarize ──────────────────────────────────────────

    async def compare(self, first: Payslip, second: Payslip) -> str:
        """Narrative of the differences between two payslips (argument order free)."""
        text = await self._model.generate([_user_turn(comparison_prompt(first, second))])
        await emit(SystemEvent(
            event_type=EventType.COMPARISON_GENERATED,
            data={"payslip_ids": [first.id, second.id], "chars": len(text)},
            source_module="gateway.service",
        ))
        return text

    async def summarize(self, payslip: Payslip) -> str:
        """Plain-language description of one payslip."""
        text = await self._model.generate([_user_turn(summary_prompt(payslip))])
        await emit(SystemEvent(
            event_type=EventType.SUMMARY_GENERATED,
            payslip_id=payslip.id,
            data={"chars": len(text)},
            source_module="gateway.service",
        ))
        return text

    # ── Chat ─────────────────────────────────────────────────────────

    async def chat(self, history: Sequence[ChatMessage], question: str, context: ChatContext) -> str:
        """Single-completion answer to ``question`` given the prior turns."""
        contents, system_instruction = build_chat_request(history, question, context)
        text = await self._model.generate(contents, system_instruction=system_instruction)
        await emit(SystemEvent(
            event_type=EventType.CHAT_ANSWERED,
            data={"history_turns": len(history), "chars": len(text), "streaming": False},
            source_module="gateway.service",
        ))
        return text

    def chat_stream(self, history: Sequence[ChatMessage], question: str, context: ChatContext) -> ChatStream:
        """Streamed answer; nothing is sent until the stream is iterated."""
        contents, system_instruction = build_chat_request(history, question, context)
        source: AsyncIterator[str] = self._model.generate_stream(contents, system_instruction=system_instruction)
        return ChatStream(source)


# ── Request construction ─────────────────────────────────────────────


def _user_turn(text: str) -> Content:
    return {"role": "user", "parts": [{"text": text}]}


def build_system_instruction(context: ChatContext) -> str:
    """Consultant persona plus whatever reference material the caller opted into."""
    instruction = CHAT_SYSTEM_PROMPT

    if context.include_tax_tables:
        instruction += tax_tables_block()

    if context.payslips_to_compare is not None:
        first, second = context.payslips_to_compare
        instruction += CHAT_COMPARE_BLOCK.format(
            label_1=period_label(first),
            label_2=period_label(second),
            json_1=first.to_pretty_json(),
            json_2=second.to_pretty_json(),
        )
    elif context.focused_payslip is not None:
        instruction += CHAT_FOCUS_BLOCK.format(
            label=period_label(context.focused_payslip),
            json=context.focused_payslip.to_pretty_json(),
        )

    if context.payslips:
        instruction += CHAT_ARCHIVE_BLOCK.format(rows=archive_rows(context.payslips))

    return instruction


def build_chat_request(
    history: Sequence[ChatMessage],
    question: str,
    context: ChatContext,
) -> tuple[list[Content], str]:
    """Replay history as user/model turns in order, then append the question.

    An attached file goes before the question text in the final user turn.

    Raises:
        GatewayError: Neither a question nor an attachment was given.
    """
    if not question.strip() and context.attachment is None:
        raise GatewayError("Empty chat question", user_message="Scrivi una domanda per l'assistente.")

    contents: list[Content] = [
        {"role": "user" if message.sender == "user" else "model", "parts": [{"text": message.text}]}
        for message in history
    ]

    parts: list[dict[str, Any]] = [{"text": question}] if question.strip() else []
    if context.attachment is not None:
        parts.insert(0, context.attachment.to_part())
    contents.append({"role": "user", "parts": parts})

    return contents, build_system_instruction(context)
