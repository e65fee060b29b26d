"""Local archive: payslips, chat history and the owner profile.

Every function takes the caller's AsyncSession and only flushes; the
request-scoped session (db.engine.get_session) commits.
Payslip payloads are stored as camelCase JSON, encrypted with AES-GCM
when encryption is enabled and a persistent key is configured.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bustapaga.config import settings
from bustapaga.models.chat import ChatMessageRecord
from bustapaga.models.payslip import StoredPayslip
from bustapaga.models.profile import PROFILE_ROW_ID, UserProfileRecord
from bustapaga.observability.events import emit
from bustapaga.schemas.archive import YearlyTotals
from bustapaga.schemas.chat import ChatMessage
from bustapaga.schemas.events import EventType, SystemEvent
from bustapaga.schemas.payslip import Payslip
from bustapaga.schemas.profile import UserProfile
from bustapaga.security.encryption import payload_encryptor

logger = logging.getLogger(__name__)


class PayslipExistsError(Exception):
    """Raised when saving a payslip whose id is already archived."""

    def __init__(self, payslip_id: str) -> None:
        super().__init__(f"Payslip {payslip_id} is already archived")
        self.payslip_id = payslip_id


# ── Payload encoding ─────────────────────────────────────────────────


def _encode_payload(payslip: Payslip) -> tuple[str, bool]:
    payload = payslip.model_dump_json(by_alias=True)
    if settings.security.encrypt_payslips and not payload_encryptor.ephemeral:
        return payload_encryptor.encrypt(payload), True
    return payload, False


def _decode_payload(row: StoredPayslip) -> Payslip:
    payload = payload_encryptor.decrypt(row.payload) if row.payload_encrypted else row.payload
    return Payslip.model_validate_json(payload)


# ── Payslips ─────────────────────────────────────────────────────────


async def save_payslip(
    db: AsyncSession,
    payslip: Payslip,
    *,
    warnings: list[str] | None = None,
    source_filename: str | None = None,
) -> StoredPayslip:
    """Insert a new payslip. Archived payslips are never replaced.

    Raises:
        PayslipExistsError: A payslip with the same id is already stored.
    """
    if await db.get(StoredPayslip, payslip.id) is not None:
        raise PayslipExistsError(payslip.id)

    payload, encrypted = _encode_payload(payslip)
    row = StoredPayslip(
        id=payslip.id,
        period_year=payslip.period.year,
        period_month=payslip.period.month,
        company_name=payslip.company.name,
        source_filename=source_filename,
        payload=payload,
        payload_encrypted=encrypted,
        warnings=list(warnings or []),
    )
    db.add(row)
    await db.flush()

    await emit(SystemEvent(
        event_type=EventType.PAYSLIP_STORED,
        payslip_id=payslip.id,
        data={
            "period": f"{payslip.period.month:02d}/{payslip.period.year}",
            "encrypted": encrypted,
            "warnings": len(row.warnings),
        },
        source_module="archive.repository",
    ))
    logger.info("Stored payslip %s (encrypted=%s)", payslip.id, encrypted)
    return row


async def list_payslips(db: AsyncSession, year: int | None = None) -> list[Payslip]:
    """All archived payslips, most recent period first."""
    stmt = select(StoredPayslip).order_by(
        StoredPayslip.period_year.desc(),
        StoredPayslip.period_month.desc(),
        StoredPayslip.created_at.desc(),
    )
    if year is not None:
        stmt = stmt.where(StoredPayslip.period_year == year)
    result = await db.execute(stmt)
    return [_decode_payload(row) for row in result.scalars().all()]


async def get_payslip(db: AsyncSession, payslip_id: str) -> Payslip | None:
    row = await db.get(StoredPayslip, payslip_id)
    if row is None:
        return None
    return _decode_payload(row)


async def delete_payslip(db: AsyncSession, payslip_id: str) -> bool:
    """Remove a payslip. Returns False when nothing was stored under that id."""
    result = await db.execute(delete(StoredPayslip).where(StoredPayslip.id == payslip_id))
    if not result.rowcount:
        return False

    await emit(SystemEvent(
        event_type=EventType.PAYSLIP_DELETED,
        payslip_id=payslip_id,
        source_module="archive.repository",
    ))
    logger.info("Deleted payslip %s", payslip_id)
    return True


async def yearly_totals(db: AsyncSession) -> list[YearlyTotals]:
    """Per-year sums of salary, tax and contributions, latest year first.

    Payloads may be encrypted, so the sums run over the decoded records.
    """
    by_year: dict[int, dict[str, Any]] = {}
    latest_month: dict[int, int] = {}

    for payslip in await list_payslips(db):
        year = payslip.period.year
        acc = by_year.setdefault(year, {
            "payslip_count": 0,
            "gross_salary": Decimal("0"),
            "total_deductions": Decimal("0"),
            "net_salary": Decimal("0"),
            "net_tax": Decimal("0"),
            "employee_contributions": Decimal("0"),
            "tfr_total_fund": Decimal("0"),
        })
        acc["payslip_count"] += 1
        acc["gross_salary"] += payslip.gross_salary
        acc["total_deductions"] += payslip.total_deductions
        acc["net_salary"] += payslip.net_salary
        acc["net_tax"] += payslip.tax_data.net_tax
        acc["employee_contributions"] += payslip.social_security_data.employee_contribution
        if payslip.period.month >= latest_month.get(year, 0):
            latest_month[year] = payslip.period.month
            acc["tfr_total_fund"] = payslip.tfr.total_fund

    return [YearlyTotals(year=year, **acc) for year, acc in sorted(by_year.items(), reverse=True)]


# ── Chat history ─────────────────────────────────────────────────────


async def append_chat_message(db: AsyncSession, message: ChatMessage) -> None:
    """Append one turn at the end of the conversation."""
    db.add(ChatMessageRecord(message_id=message.id, sender=message.sender, text=message.text))
    await db.flush()


async def get_chat_history(db: AsyncSession, limit: int | None = None) -> list[ChatMessage]:
    """The conversation in the order it happened (optionally the last ``limit`` turns)."""
    stmt = select(ChatMessageRecord).order_by(ChatMessageRecord.position.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    rows = list(result.scalars().all())
    rows.reverse()
    return [ChatMessage(id=row.message_id, sender=row.sender, text=row.text) for row in rows]


async def clear_chat_history(db: AsyncSession) -> int:
    """Delete the whole conversation. Returns the number of removed turns."""
    count = (await db.execute(select(func.count(ChatMessageRecord.position)))).scalar() or 0
    await db.execute(delete(ChatMessageRecord))

    await emit(SystemEvent(
        event_type=EventType.CHAT_HISTORY_CLEARED,
        data={"messages": count},
        source_module="archive.repository",
    ))
    return count


# ── Profile ──────────────────────────────────────────────────────────


async def get_profile(db: AsyncSession) -> UserProfile:
    """The archive owner; an empty profile until one is saved."""
    row = await db.get(UserProfileRecord, PROFILE_ROW_ID)
    if row is None:
        return UserProfile()
    return UserProfile(
        first_name=row.first_name,
        last_name=row.last_name,
        date_of_birth=row.date_of_birth,
        place_of_birth=row.place_of_birth,
    )


async def save_profile(db: AsyncSession, profile: UserProfile) -> UserProfile:
    row = await db.get(UserProfileRecord, PROFILE_ROW_ID)
    if row is None:
        row = UserProfileRecord(id=PROFILE_ROW_ID)
        db.add(row)

    row.first_name = profile.first_name
    row.last_name = profile.last_name
    row.date_of_birth = profile.date_of_birth
    row.place_of_birth = profile.place_of_birth
    await db.flush()

    await emit(SystemEvent(
        event_type=EventType.PROFILE_UPDATED,
        data={"has_date_of_birth": profile.date_of_birth is not None},
        source_module="archive.repository",
    ))
    return profile
