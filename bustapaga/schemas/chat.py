"""Chat conversation schemas and the optional context attached to a question."""

from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from bustapaga.schemas.payslip import Payslip, WireModel

Sender = Literal["user", "ai"]


class ChatMessage(WireModel):
    """One turn of the assistant conversation. History is append-only."""

    id: str = Field(default_factory=lambda: f"msg-{uuid.uuid4()}")
    text: str
    sender: Sender


class Attachment(BaseModel):
    """A file inlined into a request: original mime type + base64 payload."""

    model_config = ConfigDict(frozen=True)

    mime_type: str
    data: str  # base64, no data-URL prefix
    filename: str | None = None
    size_bytes: int = 0

    def to_part(self) -> dict[str, dict[str, str]]:
        """Gemini ``inlineData`` content part."""
        return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}


class ChatContext(BaseModel):
    """Everything besides history and question that may shape a chat answer."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    payslips: list[Payslip] = Field(default_factory=list)
    focused_payslip: Payslip | None = None
    payslips_to_compare: tuple[Payslip, Payslip] | None = None
    attachment: Attachment | None = None
    include_tax_tables: bool = False
