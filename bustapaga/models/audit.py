"""AuditLog model: immutable audit trail for every system event.

Every gateway call and archive change emits a SystemEvent which is persisted
here. This table is append-only: no updates or deletes.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bustapaga.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Event classification
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    source_module: Mapped[str | None] = mapped_column(String(100))

    # Context (nullable, not every event concerns a payslip)
    payslip_id: Mapped[str | None] = mapped_column(String(100), index=True)

    data: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} payslip={self.payslip_id}>"
