"""Deterministic cross-field checks on an extracted payslip.

Synchronous, no LLM. Advisory only: a record is never rejected or
modified, the caller receives warnings plus the dotted wire paths of the
fields involved (e.g. "netSalary", "leaveData.vacation.balance").
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from bustapaga.decoders.tax_ids import decode_cf, validate_company_tax_id
from bustapaga.schemas.payslip import LeaveBalance, PayItem, Payslip
from bustapaga.schemas.profile import UserProfile

# Extracted amounts are rounded to the cent; allow a few cents of drift
AMOUNT_TOLERANCE = Decimal("0.05")
# quantity x rate is often computed on unrounded rates
ITEM_TOLERANCE = Decimal("0.10")


@dataclass
class ConsistencyIssue:
    """One failed check."""

    field: str
    message: str
    expected: Decimal | None = None
    actual: Decimal | None = None


@dataclass
class ValidationResult:
    """Result of the consistency checks on one payslip."""

    issues: list[ConsistencyIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues]

    @property
    def inconsistent_fields(self) -> list[str]:
        seen: list[str] = []
        for issue in self.issues:
            if issue.field not in seen:
                seen.append(issue.field)
        return seen

    def add(self, field_name: str, message: str, expected: Decimal | None = None, actual: Decimal | None = None) -> None:
        self.issues.append(ConsistencyIssue(field_name, message, expected, actual))


def validate_payslip(payslip: Payslip, profile: UserProfile | None = None) -> ValidationResult:
    """Run every consistency rule on a payslip.

    Args:
        payslip: The extracted record.
        profile: Archive owner, enables the birth-date cross-check.

    Returns:
        ValidationResult; ``ok`` is True when nothing was flagged.
    """
    vr = ValidationResult()

    _check_net_salary(payslip, vr)
    _check_pay_items(payslip.income_items, "incomeItems", vr)
    _check_pay_items(payslip.deduction_items, "deductionItems", vr)
    _check_leave(payslip.leave_data.vacation, "leaveData.vacation", vr)
    _check_leave(payslip.leave_data.permits, "leaveData.permits", vr)
    _check_tax(payslip, vr)
    _check_tax_ids(payslip, profile, vr)

    return vr


# ── Totals ───────────────────────────────────────────────────────────


def _check_net_salary(payslip: Payslip, vr: ValidationResult) -> None:
    expected = payslip.gross_salary - payslip.total_deductions
    if not _close(payslip.net_salary, expected, AMOUNT_TOLERANCE):
        vr.add(
            "netSalary",
            f"Net salary {payslip.net_salary} differs from gross - deductions ({expected})",
            expected=expected,
            actual=payslip.net_salary,
        )


def _check_pay_items(items: list[PayItem], path: str, vr: ValidationResult) -> None:
    for index, item in enumerate(items):
        if item.quantity is None or item.rate is None:
            continue
        expected = item.quantity * item.rate
        if not _close(item.value, expected, ITEM_TOLERANCE):
            vr.add(
                f"{path}.{index}.value",
                f"Item '{item.description}': value {item.value} differs from quantity x rate ({expected})",
                expected=expected,
                actual=item.value,
            )


def _check_leave(balance: LeaveBalance, path: str, vr: ValidationResult) -> None:
    expected = balance.previous + balance.accrued - balance.taken
    if not _close(balance.balance, expected, AMOUNT_TOLERANCE):
        vr.add(
            f"{path}.balance",
            f"{path}: balance {balance.balance} differs from previous + accrued - taken ({expected})",
            expected=expected,
            actual=balance.balance,
        )


def _check_tax(payslip: Payslip, vr: ValidationResult) -> None:
    tax = payslip.tax_data
    deductions = tax.deductions

    expected_total = deductions.employee + (deductions.family or Decimal("0"))
    if not _close(deductions.total, expected_total, AMOUNT_TOLERANCE):
        vr.add(
            "taxData.deductions.total",
            f"Tax deductions total {deductions.total} differs from employee + family ({expected_total})",
            expected=expected_total,
            actual=deductions.total,
        )

    expected_net = max(tax.gross_tax - deductions.total, Decimal("0"))
    if not _close(tax.net_tax, expected_net, AMOUNT_TOLERANCE):
        vr.add(
            "taxData.netTax",
            f"Net tax {tax.net_tax} differs from gross tax - deductions ({expected_net})",
            expected=expected_net,
            actual=tax.net_tax,
        )


# ── Identifiers ──────────────────────────────────────────────────────


def _check_tax_ids(payslip: Payslip, profile: UserProfile | None, vr: ValidationResult) -> None:
    cf = decode_cf(payslip.employee.tax_id)
    if not cf.valid:
        vr.add("employee.taxId", f"Employee codice fiscale invalid: {cf.error}")
    elif profile is not None and profile.date_of_birth is not None and cf.birthdate != profile.date_of_birth:
        vr.add(
            "employee.taxId",
            f"Employee codice fiscale encodes birth date {cf.birthdate}, profile says {profile.date_of_birth}",
        )

    if not validate_company_tax_id(payslip.company.tax_id):
        vr.add("company.taxId", f"Company tax id invalid: {payslip.company.tax_id}")


def _close(actual: Decimal, expected: Decimal, tolerance: Decimal) -> bool:
    return abs(actual - expected) <= tolerance
