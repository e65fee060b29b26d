"""Audit log subscriber: persists every SystemEvent to the audit_log table.

Registered as a global subscriber (receives ALL events). This is the
service's append-only trail of analyses, model calls and archive changes.

Never raises: failures are logged but never propagate to the event system.
"""

from __future__ import annotations

import logging

from bustapaga.db.engine import async_session_factory
from bustapaga.models.audit import AuditLog
from bustapaga.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table.

    Failures are logged and swallowed: audit logging must never
    break an analysis or a chat answer.
    """
    try:
        async with async_session_factory() as db:
            db.add(AuditLog(
                event_id=str(event.id),
                event_type=event.event_type.value,
                source_module=event.source_module,
                payslip_id=event.payslip_id,
                data=event.data,
            ))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (payslip=%s)",
            event.event_type.value,
            event.payslip_id,
        )
