"""Italian month names and period labels used in prompts."""

from __future__ import annotations


MONTH_NAMES: tuple[str, ...] = (
    "gennaio",
    "febbraio",
    "marzo",
    "aprile",
    "maggio",
    "giugno",
    "luglio",
    "agosto",
    "settembre",
    "ottobre",
    "novembre",
    "dicembre",
)


def month_name(month: int) -> str:
    """Italian month name: 3 -> "marzo"."""
    if not 1 <= month <= 12:
        msg = f"Month out of range: {month}"
        raise ValueError(msg)
    return MONTH_NAMES[month - 1]


def format_period(month: int, year: int) -> str:
    """Pay period label: (3, 2024) -> "marzo 2024"."""
    return f"{month_name(month)} {year}"
