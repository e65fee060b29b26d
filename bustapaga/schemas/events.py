"""SystemEvent schema: the core event type that flows through the entire system.

Every gateway call and archive change emits a SystemEvent. Subscribers
(the audit logger) consume these events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Analysis
    ANALYSIS_STARTED = "analysis.started"
    ANALYSIS_COMPLETED = "analysis.completed"
    ANALYSIS_FAILED = "analysis.failed"
    VALIDATION_WARNING = "validation.warning"

    # Narratives
    COMPARISON_GENERATED = "comparison.generated"
    SUMMARY_GENERATED = "summary.generated"

    # Chat
    CHAT_QUESTION = "chat.question"
    CHAT_ANSWERED = "chat.answered"
    CHAT_STREAM_STARTED = "chat.stream_started"
    CHAT_STREAM_COMPLETED = "chat.stream_completed"
    CHAT_STREAM_FAILED = "chat.stream_failed"
    CHAT_STREAM_CANCELLED = "chat.stream_cancelled"

    # Archive
    PAYSLIP_STORED = "payslip.stored"
    PAYSLIP_DELETED = "payslip.deleted"
    PROFILE_UPDATED = "profile.updated"
    CHAT_HISTORY_CLEARED = "chat.history_cleared"

    # LLM
    LLM_REQUEST = "llm.request"
    LLM_RESPONSE = "llm.response"
    LLM_ERROR = "llm.error"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Core event that flows through the system.

    Immutable once created. Consumed by the AuditLogger, which writes
    it to the audit_log table.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional, not every event concerns a payslip)
    payslip_id: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
