"""Canned model client for local development and testing.

Returns fixed responses and records every request. No network calls.
Selected with GATEWAY_PROVIDER=mock.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

SAMPLE_PAYSLIP: dict[str, Any] = {
    "id": "payslip-sample-2024-03",
    "period": {"month": 3, "year": 2024},
    "company": {"name": "Rossi Costruzioni S.r.l.", "taxId": "01234567897", "address": "Via Roma 1, Milano"},
    "employee": {
        "firstName": "Marco",
        "lastName": "Bianchi",
        "taxId": "BNCMRC90C15H501W",
        "level": "3° livello",
        "contractType": "CCNL Edilizia Industria",
    },
    "incomeItems": [
        {"description": "Paga base", "quantity": 160, "rate": 12.5, "value": 2000.00},
        {"description": "Straordinario 25%", "quantity": 8, "rate": 15.625, "value": 125.00},
    ],
    "deductionItems": [
        {"description": "Contributi INPS 9,19%", "value": 195.29},
        {"description": "Ritenuta IRPEF", "value": 270.00},
        {"description": "Addizionale regionale", "value": 25.00},
        {"description": "Addizionale comunale", "value": 10.00},
    ],
    "grossSalary": 2125.00,
    "totalDeductions": 500.29,
    "netSalary": 1624.71,
    "taxData": {
        "taxableBase": 1929.71,
        "grossTax": 450.00,
        "deductions": {"employee": 180.00, "total": 180.00},
        "netTax": 270.00,
        "regionalSurtax": 25.00,
        "municipalSurtax": 10.00,
    },
    "socialSecurityData": {
        "taxableBase": 2125.00,
        "employeeContribution": 195.29,
        "companyContribution": 637.50,
        "inailContribution": 12.75,
    },
    "tfr": {"taxableBase": 2125.00, "accrued": 157.41, "previousBalance": 4500.00, "totalFund": 4657.41},
    "leaveData": {
        "vacation": {"previous": 10, "accrued": 2.16, "taken": 1, "balance": 11.16},
        "permits": {"previous": 20, "accrued": 6, "taken": 4, "balance": 22},
    },
}


@dataclass
class RecordedRequest:
    """One call received by the canned client."""

    contents: list[dict[str, Any]]
    system_instruction: str | None = None
    response_schema: dict[str, Any] | None = None
    streaming: bool = False


@dataclass
class CannedModelClient:
    """GenerativeModel implementation that returns deterministic responses.

    Structured requests (with a response schema) get ``analysis_response``;
    free-text requests get the first registered response whose keyword
    appears in the last user turn, else ``default_response``.
    """

    default_response: str = "Risposta simulata dell'assistente."
    analysis_response: str = field(default_factory=lambda: json.dumps(SAMPLE_PAYSLIP))
    chunk_size: int = 12
    requests: list[RecordedRequest] = field(default_factory=list)
    _canned: dict[str, str] = field(default_factory=dict, init=False, repr=False)

    def set_response(self, prompt_contains: str, response: str) -> None:
        """Register a canned response for prompts containing a keyword."""
        self._canned[prompt_contains] = response

    async def generate(
        self,
        contents: list[dict[str, Any]],
        *,
        system_instruction: str | None = None,
        response_schema: dict[str, Any] | None = None,
        temperature: float | None = None,
    ) -> str:
        self.requests.append(RecordedRequest(contents, system_instruction, response_schema))
        if response_schema is not None:
            return self.analysis_response
        return self._match(contents)

    async def generate_stream(
        self,
        contents: list[dict[str, Any]],
        *,
        system_instruction: str | None = None,
        temperature: float | None = None,
    ) -> AsyncGenerator[str, None]:
        self.requests.append(RecordedRequest(contents, system_instruction, streaming=True))
        text = self._match(contents)
        for start in range(0, len(text), self.chunk_size):
            yield text[start:start + self.chunk_size]

    async def close(self) -> None:
        return None

    def _match(self, contents: list[dict[str, Any]]) -> str:
        last = contents[-1] if contents else {}
        last_text = " ".join(part.get("text", "") for part in last.get("parts", []))
        for keyword, response in self._canned.items():
            if keyword in last_text:
                return response
        return self.default_response
