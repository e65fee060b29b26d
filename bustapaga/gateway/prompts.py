"""Prompt texts for the four gateway operations.

All prompts are in Italian: the documents, the users and the answers are.
"""

from __future__ import annotations

from bustapaga.formatters import format_period
from bustapaga.schemas.payslip import Payslip

ANALYSIS_PROMPT = (
    "Esegui un'analisi semantica completa e dettagliata di questa busta paga italiana.\n"
    "Popola lo schema JSON fornito con la massima granularità possibile:\n"
    "- riporta ogni singola voce di competenza in incomeItems e ogni trattenuta in deductionItems, "
    "con quantità e importo unitario quando presenti;\n"
    "- usa numeri con il punto come separatore decimale, senza simboli di valuta;\n"
    "- il mese del periodo di paga è un intero da 1 a 12;\n"
    "- se un valore numerico obbligatorio non compare nel documento usa 0;\n"
    "- non inventare campi che non appaiono nel documento."
)

COMPARISON_PROMPT = (
    "Confronta le seguenti due buste paga e spiega le differenze principali "
    "(competenze, trattenute, netto, imposte, contributi, TFR, ferie e permessi).\n"
    "Busta Paga 1 ({label_1}):\n"
    "{json_1}\n\n"
    "Busta Paga 2 ({label_2}):\n"
    "{json_2}\n"
)

SUMMARY_PROMPT = (
    "Descrivi in modo semplice e professionale la seguente busta paga "
    "({label}):\n"
    "{json}\n"
)

CHAT_SYSTEM_PROMPT = (
    "Sei un consulente del lavoro virtuale esperto di CCNL italiani.\n"
    "Rispondi in modo informativo, preciso e non vincolante."
)

CHAT_FOCUS_BLOCK = (
    "\nL'utente sta consultando la busta paga di {label}:\n"
    "{json}\n"
)

CHAT_COMPARE_BLOCK = (
    "\nL'utente sta confrontando le buste paga di {label_1} e {label_2}:\n"
    "Busta Paga 1:\n{json_1}\n"
    "Busta Paga 2:\n{json_2}\n"
)

CHAT_ARCHIVE_BLOCK = (
    "\nNell'archivio dell'utente sono presenti queste buste paga "
    "(periodo, azienda, lordo, trattenute, netto):\n"
    "{rows}\n"
)


def period_label(payslip: Payslip) -> str:
    return format_period(payslip.period.month, payslip.period.year)


def comparison_prompt(first: Payslip, second: Payslip) -> str:
    return COMPARISON_PROMPT.format(
        label_1=period_label(first),
        json_1=first.to_pretty_json(),
        label_2=period_label(second),
        json_2=second.to_pretty_json(),
    )


def summary_prompt(payslip: Payslip) -> str:
    return SUMMARY_PROMPT.format(label=period_label(payslip), json=payslip.to_pretty_json())


def archive_rows(payslips: list[Payslip]) -> str:
    """One line per archived payslip, oldest period first."""
    ordered = sorted(payslips, key=lambda p: (p.period.year, p.period.month))
    return "\n".join(
        f"- {period_label(p)} | {p.company.name} | lordo {p.gross_salary} | "
        f"trattenute {p.total_deductions} | netto {p.net_salary}"
        for p in ordered
    )
