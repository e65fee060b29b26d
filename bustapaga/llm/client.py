"""Google Gemini client over the Generative Language REST API.

Talks to ``models/{model}:generateContent`` and, for chat streaming,
``models/{model}:streamGenerateContent?alt=sse`` with plain httpx.
One request per call, no retries: every failure becomes a GatewayError.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from bustapaga.config import settings
from bustapaga.gateway.errors import ConfigurationError, EmptyResponseError, TransportError
from bustapaga.observability.events import emit
from bustapaga.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

Content = dict[str, Any]


class GeminiClient:
    """Async client for the Gemini generateContent endpoints.

    Request shape: ``contents`` (role + parts, parts being text or
    inlineData), optional ``systemInstruction`` and ``generationConfig``
    (temperature, responseMimeType, responseSchema). Response text is the
    concatenation of the first candidate's text parts.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        key = settings.gemini.api_key if api_key is None else api_key
        if not key:
            msg = "Gemini API key missing: set GEMINI_API_KEY in the environment or .env"
            raise ConfigurationError(msg)

        self._model = model or settings.gemini.model
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.gemini.base_url).rstrip("/"),
            headers={"x-goog-api-key": key},
            timeout=httpx.Timeout(float(settings.gemini.timeout), connect=float(settings.gemini.connect_timeout)),
            transport=transport,
        )

    @property
    def model(self) -> str:
        return self._model

    async def generate(
        self,
        contents: list[Content],
        *,
        system_instruction: str | None = None,
        response_schema: dict[str, Any] | None = None,
        temperature: float | None = None,
    ) -> str:
        """Send a single generateContent request and return the response text.

        Args:
            contents: Conversation turns, each {"role": ..., "parts": [...]}.
            system_instruction: Optional system-level instructions.
            response_schema: If given, JSON output constrained to this schema.
            temperature: Sampling temperature override.

        Returns:
            The non-empty text of the first candidate.

        Raises:
            TransportError: Network, timeout or HTTP error.
            EmptyResponseError: The model produced no text.
        """
        body = self._build_body(contents, system_instruction, response_schema, temperature)
        await self._emit_request(contents, structured=response_schema is not None, streaming=False)

        start = time.monotonic()
        try:
            response = await self._client.post(f"/models/{self._model}:generateContent", json=body)
            await _raise_for_status(response)
        except httpx.HTTPError as exc:
            raise await self._transport_failure(exc, start, streaming=False) from exc

        elapsed_ms = int((time.monotonic() - start) * 1000)
        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            await self._emit_error("invalid_json_envelope", elapsed_ms, streaming=False)
            raise TransportError(f"Gemini answered with a non-JSON body: {exc}") from exc

        text = extract_text(data)
        if not text.strip():
            reason = _empty_reason(data)
            await self._emit_error(reason, elapsed_ms, streaming=False)
            logger.error("Gemini returned no text (%s) for model %s", reason, self._model)
            raise EmptyResponseError(f"Empty response from model: {reason}")

        usage = data.get("usageMetadata", {})
        await emit(SystemEvent(
            event_type=EventType.LLM_RESPONSE,
            data={
                "model": self._model,
                "latency_ms": elapsed_ms,
                "prompt_tokens": usage.get("promptTokenCount", 0),
                "completion_tokens": usage.get("candidatesTokenCount", 0),
            },
            source_module="llm.client",
        ))
        logger.info(
            "LLM response: model=%s latency=%dms tokens=%d",
            self._model,
            elapsed_ms,
            usage.get("candidatesTokenCount", 0),
        )
        return text

    async def generate_stream(
        self,
        contents: list[Content],
        *,
        system_instruction: str | None = None,
        temperature: float | None = None,
    ) -> AsyncGenerator[str, None]:
        """Send a streaming request and yield text chunks as they arrive.

        The endpoint answers with server-sent events, one ``data: {...}``
        line per partial GenerateContentResponse.

        Raises:
            TransportError: Network, timeout or HTTP error (before or mid-stream).
            EmptyResponseError: The stream finished without any text.
        """
        body = self._build_body(contents, system_instruction, None, temperature)
        await self._emit_request(contents, structured=False, streaming=True)

        start = time.monotonic()
        total_chars = 0
        try:
            async with self._client.stream(
                "POST",
                f"/models/{self._model}:streamGenerateContent",
                params={"alt": "sse"},
                json=body,
            ) as response:
                await _raise_for_status(response)
                async for line in response.aiter_lines():
                    chunk = _parse_sse_line(line)
                    if chunk is None:
                        continue
                    token = extract_text(chunk)
                    if token:
                        total_chars += len(token)
                        yield token
        except httpx.HTTPError as exc:
            raise await self._transport_failure(exc, start, streaming=True) from exc

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if total_chars == 0:
            await self._emit_error("empty_stream", elapsed_ms, streaming=True)
            raise EmptyResponseError("Stream finished without text")

        await emit(SystemEvent(
            event_type=EventType.LLM_RESPONSE,
            data={
                "model": self._model,
                "latency_ms": elapsed_ms,
                "streaming": True,
                "total_chars": total_chars,
            },
            source_module="llm.client",
        ))
        logger.info(
            "LLM stream complete: model=%s latency=%dms chars=%d",
            self._model,
            elapsed_ms,
            total_chars,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    # ── Internals ────────────────────────────────────────────────────

    def _build_body(
        self,
        contents: list[Content],
        system_instruction: str | None,
        response_schema: dict[str, Any] | None,
        temperature: float | None,
    ) -> dict[str, Any]:
        if temperature is None:
            temperature = (
                settings.gemini.analysis_temperature
                if response_schema is not None
                else settings.gemini.chat_temperature
            )
        generation_config: dict[str, Any] = {"temperature": temperature}
        if response_schema is not None:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = response_schema

        body: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return body

    async def _emit_request(self, contents: list[Content], *, structured: bool, streaming: bool) -> None:
        await emit(SystemEvent(
            event_type=EventType.LLM_REQUEST,
            data={
                "model": self._model,
                "prompt_hash": _prompt_hash(contents),
                "turn_count": len(contents),
                "has_attachment": any("inlineData" in p for c in contents for p in c.get("parts", [])),
                "structured": structured,
                "streaming": streaming,
            },
            source_module="llm.client",
        ))

    async def _emit_error(self, error: str, elapsed_ms: int, *, streaming: bool) -> None:
        await emit(SystemEvent(
            event_type=EventType.LLM_ERROR,
            data={"model": self._model, "error": error, "latency_ms": elapsed_ms, "streaming": streaming},
            source_module="llm.client",
        ))

    async def _transport_failure(self, exc: httpx.HTTPError, start: float, *, streaming: bool) -> TransportError:
        """Log + emit a transport failure and build the error to raise."""
        elapsed_ms = int((time.monotonic() - start) * 1000)
        if isinstance(exc, httpx.TimeoutException):
            await self._emit_error("timeout", elapsed_ms, streaming=streaming)
            logger.error("LLM timeout after %dms for model %s", elapsed_ms, self._model)
            return TransportError(f"Gemini request timed out after {elapsed_ms}ms")

        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            detail = _error_detail(exc.response)
            await self._emit_error(f"http_{status}", elapsed_ms, streaming=streaming)
            logger.error("LLM HTTP %d for model %s: %s", status, self._model, detail)
            user_message = None
            if status in (401, 403):
                user_message = "Chiave API Gemini non valida o senza permessi."
            elif status == 429:
                user_message = "Limite di richieste raggiunto. Attendi qualche istante e riprova."
            return TransportError(f"Gemini HTTP {status}: {detail}", user_message=user_message, status_code=status)

        await self._emit_error(str(exc), elapsed_ms, streaming=streaming)
        logger.exception("LLM HTTP error for model %s", self._model)
        return TransportError(f"Gemini transport error: {exc}")


# ── Response helpers ─────────────────────────────────────────────────


def extract_text(data: dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate (thoughts excluded)."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if not part.get("thought"))


def _empty_reason(data: dict[str, Any]) -> str:
    feedback = data.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        return f"blocked:{feedback['blockReason']}"
    candidates = data.get("candidates") or []
    if candidates and candidates[0].get("finishReason"):
        return f"finish:{candidates[0]['finishReason']}"
    return "no_candidates"


def _parse_sse_line(line: str) -> dict[str, Any] | None:
    """Decode one ``data: {...}`` server-sent-event line; None for anything else."""
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Skipping undecodable stream chunk: %.80s", payload)
        return None
    return chunk if isinstance(chunk, dict) else None


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except (ValueError, httpx.ResponseNotRead):
        return response.reason_phrase
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.reason_phrase


async def _raise_for_status(response: httpx.Response) -> None:
    """raise_for_status that also works on unread streaming responses."""
    if response.is_error:
        await response.aread()
    response.raise_for_status()


def _prompt_hash(contents: list[Content]) -> str:
    """Short hash of the text parts only (attachments are too large to hash per call)."""
    texts = [p.get("text", "") for c in contents for p in c.get("parts", [])]
    return hashlib.md5("\n".join(texts).encode()).hexdigest()[:8]
