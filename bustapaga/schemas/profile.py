"""Archive owner profile and tax-code decoding results."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel

from bustapaga.schemas.payslip import WireModel


class UserProfile(WireModel):
    """The person whose payslips are archived."""

    first_name: str = ""
    last_name: str = ""
    date_of_birth: date | None = None
    place_of_birth: str = ""


class CfResult(BaseModel):
    """Result of decoding an Italian codice fiscale."""

    valid: bool
    codice_fiscale: str
    birthdate: date | None = None
    gender: str | None = None  # "M" or "F"
    birthplace_code: str | None = None  # codice catastale (Belfiore)
    error: str | None = None
