"""Tests for the canned model client, provider selection and reference documents."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from bustapaga.gateway.errors import ConfigurationError
from bustapaga.gateway.reference import TAX_TABLES_FOOTER, TAX_TABLES_HEADER, load_tax_tables, tax_tables_block
from bustapaga.llm.client import GeminiClient
from bustapaga.llm.factory import build_model_client
from bustapaga.llm.mock import SAMPLE_PAYSLIP, CannedModelClient
from bustapaga.schemas.payslip import Payslip
from bustapaga.validation.consistency import validate_payslip


def _turn(text: str) -> list[dict]:
    return [{"role": "user", "parts": [{"text": text}]}]


class TestCannedModelClient:
    def test_sample_is_a_consistent_payslip(self):
        assert validate_payslip(Payslip.model_validate(SAMPLE_PAYSLIP)).ok

    @pytest.mark.asyncio()
    async def test_structured_request_gets_analysis(self):
        client = CannedModelClient()
        raw = await client.generate(_turn("analizza"), response_schema={"type": "OBJECT"})
        assert json.loads(raw)["id"] == SAMPLE_PAYSLIP["id"]

    @pytest.mark.asyncio()
    async def test_keyword_match(self):
        client = CannedModelClient()
        client.set_response("ferie", "Hai 11 giorni.")
        assert await client.generate(_turn("Quante ferie ho?")) == "Hai 11 giorni."
        assert await client.generate(_turn("Ciao")) == client.default_response

    @pytest.mark.asyncio()
    async def test_stream_chunks(self):
        client = CannedModelClient(default_response="abcdefghij", chunk_size=4)
        chunks = [c async for c in client.generate_stream(_turn("x"))]
        assert chunks == ["abcd", "efgh", "ij"]
        assert client.requests[-1].streaming is True

    @pytest.mark.asyncio()
    async def test_records_requests(self):
        client = CannedModelClient()
        await client.generate(_turn("x"), system_instruction="persona")
        assert client.requests[-1].system_instruction == "persona"
        assert client.requests[-1].contents == _turn("x")


class TestFactory:
    def test_mock_provider(self):
        with patch("bustapaga.llm.factory.settings") as mock_settings:
            mock_settings.gateway.provider = "mock"
            assert isinstance(build_model_client(), CannedModelClient)

    def test_gemini_without_key_is_fatal(self):
        with (
            patch("bustapaga.llm.factory.settings") as factory_settings,
            patch("bustapaga.llm.client.settings") as client_settings,
        ):
            factory_settings.gateway.provider = "gemini"
            client_settings.gemini.api_key = ""
            with pytest.raises(ConfigurationError):
                build_model_client()

    def test_gemini_with_key(self):
        with patch("bustapaga.llm.factory.settings") as factory_settings:
            factory_settings.gateway.provider = "gemini"
            with patch("bustapaga.llm.client.settings.gemini.api_key", "test-key"):
                client = build_model_client()
        assert isinstance(client, GeminiClient)


class TestTaxTables:
    def test_bundled_document(self):
        with patch("bustapaga.gateway.reference.settings") as mock_settings:
            mock_settings.gateway.tax_tables_path = ""
            text = load_tax_tables()
        assert text is not None
        assert "0,8" in text

    def test_configured_file(self, tmp_path):
        path = tmp_path / "tabelle.txt"
        path.write_text("Milano 0,8%\nRoma 0,9%\n", encoding="utf-8")
        with patch("bustapaga.gateway.reference.settings") as mock_settings:
            mock_settings.gateway.tax_tables_path = str(path)
            block = tax_tables_block()
        assert block.startswith(f"\n{TAX_TABLES_HEADER}\nMilano 0,8%")
        assert block.rstrip().endswith(TAX_TABLES_FOOTER)

    def test_missing_configured_file_falls_back(self, tmp_path):
        with patch("bustapaga.gateway.reference.settings") as mock_settings:
            mock_settings.gateway.tax_tables_path = str(tmp_path / "assente.txt")
            assert load_tax_tables() is not None
