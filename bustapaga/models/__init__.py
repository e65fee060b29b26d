"""SQLAlchemy ORM models.

Import all models here so Base.metadata.create_all() discovers them.
"""

from __future__ import annotations

from bustapaga.models.audit import AuditLog
from bustapaga.models.base import Base
from bustapaga.models.chat import ChatMessageRecord
from bustapaga.models.payslip import StoredPayslip
from bustapaga.models.profile import PROFILE_ROW_ID, UserProfileRecord

__all__ = [
    "Base",
    "AuditLog",
    "ChatMessageRecord",
    "StoredPayslip",
    "UserProfileRecord",
    "PROFILE_ROW_ID",
]
