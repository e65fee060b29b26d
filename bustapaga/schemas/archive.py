"""Schemas for archive listings, statistics and HTTP API payloads."""

from __future__ import annotations

from decimal import Decimal

from pydantic import Field

from bustapaga.schemas.chat import ChatMessage
from bustapaga.schemas.payslip import Money, Payslip, WireModel


class PayslipListItem(WireModel):
    """One row of the archive listing."""

    id: str
    month: int
    year: int
    company_name: str
    employee_name: str
    gross_salary: Money
    net_salary: Money

    @classmethod
    def from_payslip(cls, payslip: Payslip) -> PayslipListItem:
        return cls(
            id=payslip.id,
            month=payslip.period.month,
            year=payslip.period.year,
            company_name=payslip.company.name,
            employee_name=payslip.employee.full_name,
            gross_salary=payslip.gross_salary,
            net_salary=payslip.net_salary,
        )


class YearlyTotals(WireModel):
    """Sums over every archived payslip of one calendar year."""

    year: int
    payslip_count: int = 0
    gross_salary: Money = Decimal("0")
    total_deductions: Money = Decimal("0")
    net_salary: Money = Decimal("0")
    net_tax: Money = Decimal("0")
    employee_contributions: Money = Decimal("0")
    # TFR fund as of the latest month in the year
    tfr_total_fund: Money = Decimal("0")


class AnalysisResponse(WireModel):
    """Result of POST /payslips: the stored record plus advisory warnings."""

    payslip: Payslip
    warnings: list[str] = Field(default_factory=list)
    inconsistent_fields: list[str] = Field(default_factory=list)


class CompareRequest(WireModel):
    first_id: str
    second_id: str


class NarrativeResponse(WireModel):
    """Free text produced by the model (comparison or summary)."""

    text: str


class ChatAnswer(WireModel):
    """Non-streamed chat reply, already appended to the history."""

    message: ChatMessage
