"""ChatMessageRecord model: the assistant conversation, append-only."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bustapaga.models.base import Base, TimestampMixin


class ChatMessageRecord(TimestampMixin, Base):
    """One conversation turn. ``position`` gives the replay order."""

    __tablename__ = "chat_messages"

    position: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    sender: Mapped[str] = mapped_column(String(10), nullable=False, comment="user or ai")
    text: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<ChatMessageRecord position={self.position} sender={self.sender}>"
