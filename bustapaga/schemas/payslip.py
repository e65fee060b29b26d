"""Pydantic schemas for the canonical Payslip record.

This is the single source of truth for the payslip contract: the Gemini
response schema is derived from these classes (see gateway/schema.py).
Wire names are camelCase, Python attributes snake_case. All money fields
use Decimal and serialize to JSON numbers. Records are frozen.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

# Decimal in Python, plain number in JSON
Number = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
Money = Number

PAYSLIP_ID_PREFIX = "payslip-"


def new_payslip_id() -> str:
    """Generate a random, collision-free payslip identity."""
    return f"{PAYSLIP_ID_PREFIX}{uuid.uuid4()}"


class WireModel(BaseModel):
    """Base for every record exchanged with the model and the API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# ── Building blocks ──────────────────────────────────────────────────


class PayItem(WireModel):
    """A single line (voce) of the competenze or trattenute tables."""

    description: str
    quantity: Number | None = None  # hours, days, units
    rate: Number | None = None  # unit amount
    value: Money


class LeaveBalance(WireModel):
    """Residual balance for one leave type (ferie or permessi/ROL)."""

    previous: Number  # residuo anno/mese precedente
    accrued: Number  # maturato
    taken: Number  # goduto
    balance: Number  # saldo


class PayPeriod(WireModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1900, le=2100)


class Company(WireModel):
    name: str
    tax_id: str  # partita IVA or codice fiscale
    address: str | None = None


class Employee(WireModel):
    first_name: str
    last_name: str
    tax_id: str  # codice fiscale
    level: str | None = None  # livello di inquadramento
    contract_type: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class TaxDeductions(WireModel):
    """IRPEF detrazioni."""

    employee: Money  # detrazione lavoro dipendente
    family: Money | None = None  # detrazioni familiari a carico
    total: Money


class TaxData(WireModel):
    """IRPEF withholding for the period."""

    taxable_base: Money  # imponibile fiscale
    gross_tax: Money  # imposta lorda
    deductions: TaxDeductions
    net_tax: Money  # imposta netta
    regional_surtax: Money  # addizionale regionale
    municipal_surtax: Money  # addizionale comunale


class SocialSecurityData(WireModel):
    """INPS contributions."""

    taxable_base: Money  # imponibile previdenziale
    employee_contribution: Money
    company_contribution: Money
    inail_contribution: Money | None = None


class Tfr(WireModel):
    """Trattamento di fine rapporto."""

    taxable_base: Money  # imponibile TFR
    accrued: Money  # quota maturata nel mese
    previous_balance: Money  # fondo al 31/12 anno precedente
    total_fund: Money


class LeaveData(WireModel):
    vacation: LeaveBalance  # ferie
    permits: LeaveBalance  # permessi / ROL


# ── Canonical record ─────────────────────────────────────────────────


class Payslip(WireModel):
    """Structured data of one Italian payslip (busta paga).

    Created only as the parsed output of an analysis call and never
    mutated afterwards. A missing or empty ``id`` is replaced with a
    random identity at validation time.
    """

    id: str = Field(default="", validate_default=True)
    period: PayPeriod
    company: Company
    employee: Employee

    income_items: list[PayItem]
    deduction_items: list[PayItem]

    gross_salary: Money  # totale competenze
    total_deductions: Money  # totale trattenute
    net_salary: Money  # netto in busta

    tax_data: TaxData
    social_security_data: SocialSecurityData
    tfr: Tfr
    leave_data: LeaveData

    @field_validator("id", mode="before")
    @classmethod
    def ensure_id(cls, v: Any) -> str:
        """Synthesize an identity when the model omits one."""
        if v is None or not str(v).strip():
            return new_payslip_id()
        return str(v).strip()

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON structure used on the wire."""
        return self.model_dump(mode="json", by_alias=True)

    def to_pretty_json(self) -> str:
        """Human-readable JSON, as embedded in comparison/summary prompts."""
        return self.model_dump_json(by_alias=True, indent=2)
