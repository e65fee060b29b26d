"""Italian tax identifiers: codice fiscale (people) and partita IVA (companies).

Pure Python: no LLM, no DB.

CF format: AAABBB 00C00 D000 E
  - AAA:  surname consonants (then vowels, then X)
  - BBB:  name consonants (then vowels, then X)
  - 00:   year of birth (last 2 digits)
  - C:    month of birth (letter A–T, non-sequential)
  - 00:   day of birth (1–31 male, 41–71 female)
  - D000: birthplace code (codice catastale / Belfiore)
  - E:    check character

P.IVA format: 11 digits, the last one a Luhn-style check digit.

Reference: DPR 605/1973, Decreto MEF 12/03/1974, DPR 633/1972.
"""

from __future__ import annotations

import re
from datetime import date

from bustapaga.schemas.profile import CfResult

_CF_PATTERN = re.compile(r"^[A-Z]{6}\d{2}[A-Z]\d{2}[A-Z]\d{3}[A-Z]$")
_PIVA_PATTERN = re.compile(r"^\d{11}$")

MONTH_MAP: dict[str, int] = {
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "H": 6,
    "L": 7, "M": 8, "P": 9, "R": 10, "S": 11, "T": 12,
}

# Checksum tables per Decreto MEF 12/03/1974
ODD_VALUES: dict[str, int] = {
    "0": 1, "1": 0, "2": 5, "3": 7, "4": 9, "5": 13, "6": 15,
    "7": 17, "8": 19, "9": 21,
    "A": 1, "B": 0, "C": 5, "D": 7, "E": 9, "F": 13, "G": 15,
    "H": 17, "I": 19, "J": 21, "K": 2, "L": 4, "M": 18, "N": 20,
    "O": 11, "P": 3, "Q": 6, "R": 8, "S": 12, "T": 14, "U": 16,
    "V": 10, "W": 22, "X": 25, "Y": 24, "Z": 23,
}

EVEN_VALUES: dict[str, int] = {
    "0": 0, "1": 1, "2": 2, "3": 3, "4": 4, "5": 5, "6": 6,
    "7": 7, "8": 8, "9": 9,
    "A": 0, "B": 1, "C": 2, "D": 3, "E": 4, "F": 5, "G": 6,
    "H": 7, "I": 8, "J": 9, "K": 10, "L": 11, "M": 12, "N": 13,
    "O": 14, "P": 15, "Q": 16, "R": 17, "S": 18, "T": 19, "U": 20,
    "V": 21, "W": 22, "X": 23, "Y": 24, "Z": 25,
}


def normalize_tax_id(value: str) -> str:
    """Uppercase and drop spaces; strips an "IT" prefix from a VAT number."""
    cleaned = re.sub(r"\s+", "", value).upper()
    if cleaned.startswith("IT") and _PIVA_PATTERN.match(cleaned[2:]):
        return cleaned[2:]
    return cleaned


# ── Codice fiscale ───────────────────────────────────────────────────


def validate_cf_format(cf: str) -> bool:
    """Check that the CF matches the expected 16-character pattern."""
    return bool(_CF_PATTERN.match(cf.upper().strip()))


def validate_cf_checksum(cf: str) -> bool:
    """Validate the check character (position 16) of a codice fiscale."""
    cf = cf.upper().strip()
    if len(cf) != 16:
        return False
    total = 0
    for i in range(15):
        char = cf[i]
        if i % 2 == 0:  # odd position (1-indexed)
            total += ODD_VALUES.get(char, 0)
        else:
            total += EVEN_VALUES.get(char, 0)
    return cf[15] == chr(65 + (total % 26))


def decode_cf(cf: str, reference: date | None = None) -> CfResult:
    """Decode birth date, gender and birthplace code from a codice fiscale.

    Args:
        cf: The 16-character codice fiscale string.
        reference: Date used to infer the century (defaults to today).
    """
    cf_clean = normalize_tax_id(cf)

    if not validate_cf_format(cf_clean):
        return CfResult(
            valid=False,
            codice_fiscale=cf_clean,
            error="Formato non valido: il codice fiscale deve essere di 16 caratteri alfanumerici",
        )

    if not validate_cf_checksum(cf_clean):
        return CfResult(valid=False, codice_fiscale=cf_clean, error="Carattere di controllo non valido")

    month = MONTH_MAP.get(cf_clean[8])
    if month is None:
        return CfResult(valid=False, codice_fiscale=cf_clean, error=f"Lettera mese non valida: {cf_clean[8]}")

    day_raw = int(cf_clean[9:11])
    gender, day = ("F", day_raw - 40) if day_raw > 40 else ("M", day_raw)

    # 2-digit year above the reference year's last two digits -> 1900s
    year_part = int(cf_clean[6:8])
    today = reference or date.today()
    year = 1900 + year_part if year_part > today.year % 100 else 2000 + year_part

    try:
        birthdate = date(year, month, day)
    except ValueError:
        return CfResult(
            valid=False,
            codice_fiscale=cf_clean,
            error=f"Data di nascita non valida: {year}-{month:02d}-{day:02d}",
        )

    return CfResult(
        valid=True,
        codice_fiscale=cf_clean,
        birthdate=birthdate,
        gender=gender,
        birthplace_code=cf_clean[11:15],
    )


# ── Partita IVA ──────────────────────────────────────────────────────


def validate_partita_iva(piva: str) -> bool:
    """Validate format and check digit of an 11-digit partita IVA."""
    piva = normalize_tax_id(piva)
    if not _PIVA_PATTERN.match(piva):
        return False
    total = 0
    for i, char in enumerate(piva[:10]):
        digit = int(char)
        if i % 2 == 1:  # even position (1-indexed) is doubled
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return (10 - total % 10) % 10 == int(piva[10])


def validate_company_tax_id(tax_id: str) -> bool:
    """A company is identified by a partita IVA or, for some entities, a CF."""
    cleaned = normalize_tax_id(tax_id)
    if _PIVA_PATTERN.match(cleaned):
        return validate_partita_iva(cleaned)
    return validate_cf_format(cleaned) and validate_cf_checksum(cleaned)
