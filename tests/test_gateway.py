"""Tests for the AI gateway adapters against the canned model client.

Covers:
- analyze: structured request, valid/invalid output, identity synthesis
- compare / summarize: prompt content, argument order, repeated calls
- chat: history replay order, attachment placement, system instruction blocks
- chat_stream: chunked answer collected through ChatStream
"""

from __future__ import annotations

import base64
import json
from unittest.mock import AsyncMock, patch

import pytest

from bustapaga.gateway.errors import EmptyResponseError, GatewayError, InvalidExtractionError, TransportError
from bustapaga.gateway.prompts import ANALYSIS_PROMPT, CHAT_SYSTEM_PROMPT
from bustapaga.gateway.protocols import Analyzer, ChatResponder, Comparator, GenerativeModel, Summarizer
from bustapaga.gateway.reference import TAX_TABLES_HEADER
from bustapaga.gateway.schema import PAYSLIP_RESPONSE_SCHEMA
from bustapaga.gateway.service import PayslipGateway, build_chat_request
from bustapaga.gateway.streaming import StreamState
from bustapaga.llm.mock import SAMPLE_PAYSLIP, CannedModelClient
from bustapaga.schemas.chat import Attachment, ChatContext, ChatMessage
from bustapaga.schemas.payslip import Payslip

# ── Helpers ──────────────────────────────────────────────────────────


def _payslip(month: int = 3, payslip_id: str | None = None) -> Payslip:
    data = json.loads(json.dumps(SAMPLE_PAYSLIP))
    data["period"] = {"month": month, "year": 2024}
    data["id"] = payslip_id or f"payslip-2024-{month:02d}"
    return Payslip.model_validate(data)


def _attachment() -> Attachment:
    raw = b"%PDF-1.4 fake"
    return Attachment(mime_type="application/pdf", data=base64.b64encode(raw).decode(), size_bytes=len(raw))


@pytest.fixture()
def mock_emit():
    with (
        patch("bustapaga.gateway.service.emit", new_callable=AsyncMock) as m,
        patch("bustapaga.gateway.streaming.emit", new_callable=AsyncMock),
    ):
        yield m


@pytest.fixture()
def model() -> CannedModelClient:
    return CannedModelClient()


@pytest.fixture()
def gateway(model: CannedModelClient) -> PayslipGateway:
    return PayslipGateway(model)


class TestProtocols:
    def test_gateway_satisfies_capabilities(self, gateway):
        assert isinstance(gateway, Analyzer)
        assert isinstance(gateway, Comparator)
        assert isinstance(gateway, Summarizer)
        assert isinstance(gateway, ChatResponder)

    def test_canned_client_is_a_model(self, model):
        assert isinstance(model, GenerativeModel)


# ── analyze ──────────────────────────────────────────────────────────


class TestAnalyze:
    @pytest.mark.asyncio()
    async def test_valid_output(self, gateway, model, mock_emit):
        attachment = _attachment()
        payslip = await gateway.analyze(attachment)

        assert payslip.id.startswith("payslip-")
        assert payslip.id != SAMPLE_PAYSLIP["id"]

        request = model.requests[-1]
        assert request.response_schema == PAYSLIP_RESPONSE_SCHEMA
        assert request.contents == [
            {"role": "user", "parts": [{"text": ANALYSIS_PROMPT}, attachment.to_part()]},
        ]

    @pytest.mark.asyncio()
    async def test_emits_started_and_completed(self, gateway, mock_emit):
        await gateway.analyze(_attachment())
        types = [call.args[0].event_type.value for call in mock_emit.call_args_list]
        assert types == ["analysis.started", "analysis.completed"]

    @pytest.mark.asyncio()
    async def test_invalid_output(self, gateway, model, mock_emit):
        model.analysis_response = "Questo documento non sembra una busta paga."
        with pytest.raises(InvalidExtractionError) as exc_info:
            await gateway.analyze(_attachment())
        assert exc_info.value.user_message == (
            "L'analisi ha prodotto un risultato non valido. "
            "Assicurati che il file sia una busta paga chiara."
        )
        assert mock_emit.call_args_list[-1].args[0].event_type.value == "analysis.failed"

    @pytest.mark.asyncio()
    async def test_incomplete_output(self, gateway, model, mock_emit):
        partial = {k: v for k, v in SAMPLE_PAYSLIP.items() if k != "tfr"}
        model.analysis_response = json.dumps(partial)
        with pytest.raises(InvalidExtractionError):
            await gateway.analyze(_attachment())

    @pytest.mark.asyncio()
    async def test_missing_id_synthesized_and_unique(self, gateway, model, mock_emit):
        model.analysis_response = json.dumps({k: v for k, v in SAMPLE_PAYSLIP.items() if k != "id"})
        first = await gateway.analyze(_attachment())
        second = await gateway.analyze(_attachment())
        assert first.id.startswith("payslip-")
        assert first.id != second.id

    @pytest.mark.asyncio()
    async def test_empty_answer_is_invalid_extraction(self, mock_emit):
        blocked = AsyncMock()
        blocked.generate.side_effect = EmptyResponseError("Empty response from model: finish:SAFETY")
        with pytest.raises(InvalidExtractionError) as exc_info:
            await PayslipGateway(blocked).analyze(_attachment())
        assert exc_info.value.raw_output == ""
        assert "busta paga chiara" in exc_info.value.user_message
        assert mock_emit.call_args_list[-1].args[0].event_type.value == "analysis.failed"

    @pytest.mark.asyncio()
    async def test_transport_failure_propagates(self, mock_emit):
        failing = AsyncMock()
        failing.generate.side_effect = TransportError("connection refused", status_code=503)
        with pytest.raises(TransportError) as exc_info:
            await PayslipGateway(failing).analyze(_attachment())
        assert exc_info.value.status_code == 503
        assert mock_emit.call_args_list[-1].args[0].event_type.value == "analysis.failed"

    @pytest.mark.asyncio()
    async def test_model_supplied_id_replaced(self, gateway, model, mock_emit):
        for month in (3, 4):
            model.analysis_response = json.dumps({**SAMPLE_PAYSLIP, "id": "1", "period": {"month": month, "year": 2024}})
            payslip = await gateway.analyze(_attachment())
            assert payslip.id != "1"
            assert payslip.id.startswith("payslip-")


# ── compare / summarize ──────────────────────────────────────────────


class TestCompare:
    @pytest.mark.asyncio()
    async def test_prompt_contains_both_payslips(self, gateway, model, mock_emit):
        text = await gateway.compare(_payslip(3), _payslip(4))

        assert text == model.default_response
        prompt = model.requests[-1].contents[0]["parts"][0]["text"]
        assert "Busta Paga 1 (marzo 2024)" in prompt
        assert "Busta Paga 2 (aprile 2024)" in prompt
        assert '"grossSalary": 2125.0' in prompt
        assert model.requests[-1].response_schema is None

    @pytest.mark.asyncio()
    async def test_either_order(self, gateway, mock_emit):
        assert await gateway.compare(_payslip(3), _payslip(4))
        assert await gateway.compare(_payslip(4), _payslip(3))

    @pytest.mark.asyncio()
    async def test_empty_answer(self, mock_emit):
        failing = AsyncMock()
        failing.generate.side_effect = EmptyResponseError("no text")
        with pytest.raises(EmptyResponseError):
            await PayslipGateway(failing).compare(_payslip(3), _payslip(4))


class TestSummarize:
    @pytest.mark.asyncio()
    async def test_summary(self, gateway, model, mock_emit):
        model.set_response("Descrivi", "Stipendio netto di 1.624,71 euro.")
        assert await gateway.summarize(_payslip()) == "Stipendio netto di 1.624,71 euro."
        assert "marzo 2024" in model.requests[-1].contents[0]["parts"][0]["text"]

    @pytest.mark.asyncio()
    async def test_repeated_calls_independent(self, gateway, model, mock_emit):
        payslip = _payslip()
        assert await gateway.summarize(payslip)
        assert await gateway.summarize(payslip)
        assert len(model.requests) == 2


# ── chat ─────────────────────────────────────────────────────────────


class TestChatRequest:
    def test_empty_history(self):
        contents, instruction = build_chat_request([], "Cos'è il TFR?", ChatContext())
        assert contents == [{"role": "user", "parts": [{"text": "Cos'è il TFR?"}]}]
        assert instruction == CHAT_SYSTEM_PROMPT

    def test_history_order_and_roles(self):
        history = [
            ChatMessage(text="Ciao", sender="user"),
            ChatMessage(text="Come posso aiutarti?", sender="ai"),
            ChatMessage(text="Quante ferie ho?", sender="user"),
            ChatMessage(text="11,16 giorni.", sender="ai"),
        ]
        contents, _ = build_chat_request(history, "E i permessi?", ChatContext())

        assert [c["role"] for c in contents] == ["user", "model", "user", "model", "user"]
        assert [c["parts"][0]["text"] for c in contents] == [
            "Ciao",
            "Come posso aiutarti?",
            "Quante ferie ho?",
            "11,16 giorni.",
            "E i permessi?",
        ]

    def test_attachment_before_question(self):
        attachment = _attachment()
        contents, _ = build_chat_request([], "Controlla questo", ChatContext(attachment=attachment))
        assert contents[-1]["parts"] == [attachment.to_part(), {"text": "Controlla questo"}]

    def test_attachment_without_question(self):
        attachment = _attachment()
        contents, _ = build_chat_request([], "", ChatContext(attachment=attachment))
        assert contents[-1]["parts"] == [attachment.to_part()]

    def test_empty_question_rejected(self):
        with pytest.raises(GatewayError):
            build_chat_request([], "   ", ChatContext())

    def test_tax_tables_included_on_request(self):
        _, instruction = build_chat_request([], "Addizionale?", ChatContext(include_tax_tables=True))
        assert TAX_TABLES_HEADER in instruction

    def test_tax_tables_excluded_by_default(self):
        _, instruction = build_chat_request([], "Addizionale?", ChatContext())
        assert TAX_TABLES_HEADER not in instruction

    def test_focused_payslip(self):
        _, instruction = build_chat_request([], "Domanda", ChatContext(focused_payslip=_payslip(5)))
        assert "busta paga di maggio 2024" in instruction
        assert '"netSalary": 1624.71' in instruction

    def test_compare_pair_takes_precedence(self):
        context = ChatContext(
            focused_payslip=_payslip(5),
            payslips_to_compare=(_payslip(3), _payslip(4)),
        )
        _, instruction = build_chat_request([], "Domanda", context)
        assert "marzo 2024 e aprile 2024" in instruction
        assert "maggio 2024" not in instruction

    def test_archive_rows(self):
        context = ChatContext(payslips=[_payslip(4), _payslip(2)])
        _, instruction = build_chat_request([], "Domanda", context)
        assert instruction.index("febbraio 2024") < instruction.index("aprile 2024")


class TestChat:
    @pytest.mark.asyncio()
    async def test_single_answer(self, gateway, model, mock_emit):
        model.set_response("TFR", "Il TFR è il trattamento di fine rapporto.")
        answer = await gateway.chat([], "Cos'è il TFR?", ChatContext())
        assert answer == "Il TFR è il trattamento di fine rapporto."
        assert model.requests[-1].system_instruction.startswith(CHAT_SYSTEM_PROMPT)

    @pytest.mark.asyncio()
    async def test_stream(self, gateway, model, mock_emit):
        model.chunk_size = 5
        stream = gateway.chat_stream([], "Ciao", ChatContext())
        assert not stream.started
        assert not model.requests  # nothing sent before iteration

        chunks = [chunk async for chunk in stream]

        assert "".join(chunks) == model.default_response
        assert len(chunks) > 1
        assert stream.state is StreamState.COMPLETED
        assert model.requests[-1].streaming is True
