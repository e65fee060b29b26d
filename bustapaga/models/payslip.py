"""StoredPayslip model: one archived payslip.

The full record lives in ``payload`` (camelCase JSON, AES-GCM encrypted
when ``payload_encrypted``). Period and company are kept in clear for
listing and ordering without decrypting every row.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bustapaga.models.base import Base, TimestampMixin


class StoredPayslip(TimestampMixin, Base):
    """An analyzed payslip in the local archive."""

    __tablename__ = "payslips"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)

    period_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_filename: Mapped[str | None] = mapped_column(String(255))

    payload: Mapped[str] = mapped_column(Text, nullable=False)
    payload_encrypted: Mapped[bool] = mapped_column(default=False)

    # Advisory consistency warnings computed at analysis time
    warnings: Mapped[list[Any] | None] = mapped_column(JSON)

    def __repr__(self) -> str:
        return f"<StoredPayslip id={self.id} period={self.period_month:02d}/{self.period_year}>"
