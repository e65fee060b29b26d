"""Tests for the Gemini REST client: httpx.MockTransport, no network.

Covers:
- Request shape: URL, API key header, contents, generationConfig, systemInstruction
- Text extraction (thought parts skipped), empty/blocked candidates
- HTTP errors, timeouts, non-JSON bodies mapped to TransportError
- SSE streaming, including mid-stream failures and empty streams
- Missing API key raises ConfigurationError
"""

from __future__ import annotations

import json
from collections.abc import Callable
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from bustapaga.gateway.errors import ConfigurationError, EmptyResponseError, TransportError
from bustapaga.llm.client import GeminiClient, _parse_sse_line, extract_text

# ── Helpers ──────────────────────────────────────────────────────────


def _candidate(*texts: str, finish: str = "STOP") -> dict:
    return {
        "candidates": [{"content": {"role": "model", "parts": [{"text": t} for t in texts]}, "finishReason": finish}],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 5},
    }


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> GeminiClient:
    return GeminiClient(
        api_key="test-key",
        model="gemini-test",
        base_url="https://gemini.example/v1beta",
        transport=httpx.MockTransport(handler),
    )


def _sse(*payloads: dict) -> str:
    return "".join(f"data: {json.dumps(p)}\r\n\r\n" for p in payloads)


_USER_TURN = [{"role": "user", "parts": [{"text": "Ciao"}]}]


@pytest.fixture()
def mock_emit():
    with patch("bustapaga.llm.client.emit", new_callable=AsyncMock) as m:
        yield m


# ── Construction ─────────────────────────────────────────────────────


class TestConfiguration:
    def test_missing_api_key(self):
        with pytest.raises(ConfigurationError) as exc_info:
            GeminiClient(api_key="")
        assert "GEMINI_API_KEY" in exc_info.value.user_message

    def test_model_property(self):
        assert _client(lambda r: httpx.Response(200)).model == "gemini-test"


# ── generate ─────────────────────────────────────────────────────────


class TestGenerate:
    @pytest.mark.asyncio()
    async def test_request_shape(self, mock_emit):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=_candidate('{"ok": true}'))

        client = _client(handler)
        schema = {"type": "OBJECT", "properties": {"ok": {"type": "BOOLEAN"}}}
        text = await client.generate(_USER_TURN, system_instruction="Sei un consulente", response_schema=schema)

        assert text == '{"ok": true}'
        request = captured[0]
        assert request.url.path == "/v1beta/models/gemini-test:generateContent"
        assert request.headers["x-goog-api-key"] == "test-key"
        body = json.loads(request.content)
        assert body["contents"] == _USER_TURN
        assert body["systemInstruction"] == {"parts": [{"text": "Sei un consulente"}]}
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert body["generationConfig"]["responseSchema"] == schema

    @pytest.mark.asyncio()
    async def test_plain_text_has_no_schema(self, mock_emit):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=_candidate("Ciao!"))

        await _client(handler).generate(_USER_TURN, temperature=0.3)
        body = json.loads(captured[0].content)
        assert body["generationConfig"] == {"temperature": 0.3}
        assert "systemInstruction" not in body

    @pytest.mark.asyncio()
    async def test_parts_concatenated(self, mock_emit):
        client = _client(lambda r: httpx.Response(200, json=_candidate("Il netto ", "è 1.624,71 €")))
        assert await client.generate(_USER_TURN) == "Il netto è 1.624,71 €"

    @pytest.mark.asyncio()
    async def test_emits_request_and_response(self, mock_emit):
        await _client(lambda r: httpx.Response(200, json=_candidate("ok"))).generate(_USER_TURN)
        types = [call.args[0].event_type.value for call in mock_emit.call_args_list]
        assert types == ["llm.request", "llm.response"]

    @pytest.mark.asyncio()
    async def test_blocked_prompt(self, mock_emit):
        client = _client(lambda r: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}))
        with pytest.raises(EmptyResponseError, match="blocked:SAFETY"):
            await client.generate(_USER_TURN)

    @pytest.mark.asyncio()
    async def test_whitespace_only(self, mock_emit):
        client = _client(lambda r: httpx.Response(200, json=_candidate("  \n")))
        with pytest.raises(EmptyResponseError):
            await client.generate(_USER_TURN)

    @pytest.mark.asyncio()
    async def test_http_error(self, mock_emit):
        client = _client(lambda r: httpx.Response(500, json={"error": {"message": "Internal error"}}))
        with pytest.raises(TransportError) as exc_info:
            await client.generate(_USER_TURN)
        assert exc_info.value.status_code == 500
        assert "Internal error" in str(exc_info.value)
        assert mock_emit.call_args_list[-1].args[0].event_type.value == "llm.error"

    @pytest.mark.asyncio()
    async def test_rate_limited(self, mock_emit):
        client = _client(lambda r: httpx.Response(429, json={"error": {"message": "Resource exhausted"}}))
        with pytest.raises(TransportError) as exc_info:
            await client.generate(_USER_TURN)
        assert exc_info.value.status_code == 429
        assert "Limite di richieste" in exc_info.value.user_message

    @pytest.mark.asyncio()
    async def test_invalid_key(self, mock_emit):
        client = _client(lambda r: httpx.Response(403, text="Forbidden"))
        with pytest.raises(TransportError) as exc_info:
            await client.generate(_USER_TURN)
        assert "non valida" in exc_info.value.user_message

    @pytest.mark.asyncio()
    async def test_timeout(self, mock_emit):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError, match="timed out"):
            await _client(handler).generate(_USER_TURN)

    @pytest.mark.asyncio()
    async def test_connection_error(self, mock_emit):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            await _client(handler).generate(_USER_TURN)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio()
    async def test_non_json_body(self, mock_emit):
        client = _client(lambda r: httpx.Response(200, text="<html>proxy</html>"))
        with pytest.raises(TransportError, match="non-JSON"):
            await client.generate(_USER_TURN)


# ── generate_stream ──────────────────────────────────────────────────


class TestGenerateStream:
    @pytest.mark.asyncio()
    async def test_chunks(self, mock_emit):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(
                200,
                text=_sse(_candidate("Il TFR "), _candidate("matura ogni "), _candidate("mese.")),
                headers={"content-type": "text/event-stream"},
            )

        chunks = [c async for c in _client(handler).generate_stream(_USER_TURN, system_instruction="x")]

        assert chunks == ["Il TFR ", "matura ogni ", "mese."]
        assert captured[0].url.path == "/v1beta/models/gemini-test:streamGenerateContent"
        assert captured[0].url.params["alt"] == "sse"

    @pytest.mark.asyncio()
    async def test_empty_stream(self, mock_emit):
        client = _client(lambda r: httpx.Response(200, text=_sse({"candidates": []})))
        with pytest.raises(EmptyResponseError):
            _ = [c async for c in client.generate_stream(_USER_TURN)]

    @pytest.mark.asyncio()
    async def test_http_error_before_stream(self, mock_emit):
        client = _client(lambda r: httpx.Response(503, json={"error": {"message": "Overloaded"}}))
        with pytest.raises(TransportError) as exc_info:
            _ = [c async for c in client.generate_stream(_USER_TURN)]
        assert exc_info.value.status_code == 503


# ── Helpers ──────────────────────────────────────────────────────────


class TestResponseHelpers:
    def test_extract_text_skips_thoughts(self):
        data = {"candidates": [{"content": {"parts": [{"text": "pensiero", "thought": True}, {"text": "risposta"}]}}]}
        assert extract_text(data) == "risposta"

    def test_extract_text_no_candidates(self):
        assert extract_text({}) == ""

    def test_parse_sse_line(self):
        assert _parse_sse_line('data: {"a": 1}') == {"a": 1}
        assert _parse_sse_line("event: ping") is None
        assert _parse_sse_line("data: [DONE]") is None
        assert _parse_sse_line("data: {broken") is None
        assert _parse_sse_line("") is None
