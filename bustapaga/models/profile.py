"""UserProfileRecord model: single-row owner profile."""

from __future__ import annotations

from datetime import date

from sqlalchemy import Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bustapaga.models.base import Base, TimestampMixin

PROFILE_ROW_ID = 1


class UserProfileRecord(TimestampMixin, Base):
    """Owner of the archive. Always stored with id == PROFILE_ROW_ID."""

    __tablename__ = "user_profile"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=PROFILE_ROW_ID)
    first_name: Mapped[str] = mapped_column(String(100), default="")
    last_name: Mapped[str] = mapped_column(String(100), default="")
    date_of_birth: Mapped[date | None] = mapped_column(Date)
    place_of_birth: Mapped[str] = mapped_column(String(100), default="")
