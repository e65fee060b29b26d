"""HTTP API: upload, archive, narratives and chat over the AI gateway.

Gateway failures are mapped to status codes with the Italian user message
as ``detail``. The gateway instance lives on ``app.state.gateway``.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from bustapaga.archive.repository import (
    PayslipExistsError,
    append_chat_message,
    clear_chat_history,
    delete_payslip,
    get_chat_history,
    get_payslip,
    get_profile,
    list_payslips,
    save_payslip,
    save_profile,
    yearly_totals,
)
from bustapaga.config import settings
from bustapaga.db.engine import async_session_factory, get_session
from bustapaga.gateway.attachments import encode_attachment
from bustapaga.gateway.errors import (
    AttachmentError,
    ConfigurationError,
    EmptyResponseError,
    GatewayError,
    InvalidExtractionError,
    TransportError,
)
from bustapaga.gateway.service import PayslipGateway
from bustapaga.gateway.streaming import ChatStream, StreamState
from bustapaga.observability.events import emit
from bustapaga.schemas.archive import (
    AnalysisResponse,
    ChatAnswer,
    CompareRequest,
    NarrativeResponse,
    PayslipListItem,
    YearlyTotals,
)
from bustapaga.schemas.chat import Attachment, ChatContext, ChatMessage
from bustapaga.schemas.events import EventType, SystemEvent
from bustapaga.schemas.payslip import Payslip
from bustapaga.schemas.profile import UserProfile
from bustapaga.validation.consistency import validate_payslip

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_BY_ERROR: dict[type[GatewayError], int] = {
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    TransportError: status.HTTP_502_BAD_GATEWAY,
    InvalidExtractionError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EmptyResponseError: status.HTTP_502_BAD_GATEWAY,
    AttachmentError: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
}


def http_error(exc: GatewayError) -> HTTPException:
    """Translate a gateway failure into an HTTP error carrying the user message."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type in type(exc).__mro__:
        if error_type in _STATUS_BY_ERROR:
            code = _STATUS_BY_ERROR[error_type]
            break
    return HTTPException(status_code=code, detail=exc.user_message)


def get_gateway(request: Request) -> PayslipGateway:
    """Dependency: the gateway built at startup."""
    return request.app.state.gateway


async def _require_payslip(db: AsyncSession, payslip_id: str) -> Payslip:
    payslip = await get_payslip(db, payslip_id)
    if payslip is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Busta paga non trovata.")
    return payslip


async def _read_upload(upload: UploadFile) -> Attachment:
    raw = await upload.read()
    try:
        return encode_attachment(raw, upload.content_type, upload.filename)
    except AttachmentError as exc:
        logger.warning("Rejected upload %s: %s", upload.filename, exc)
        raise http_error(exc) from exc


# ── Payslips ─────────────────────────────────────────────────────────


@router.post("/payslips", response_model=AnalysisResponse, status_code=status.HTTP_201_CREATED)
async def upload_payslip(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_session),
    gateway: PayslipGateway = Depends(get_gateway),
) -> AnalysisResponse:
    """Analyze an uploaded payslip, check it and add it to the archive."""
    attachment = await _read_upload(file)
    try:
        payslip = await gateway.analyze(attachment)
    except GatewayError as exc:
        raise http_error(exc) from exc

    result = validate_payslip(payslip, await get_profile(db))
    if not result.ok:
        await emit(SystemEvent(
            event_type=EventType.VALIDATION_WARNING,
            payslip_id=payslip.id,
            data={"fields": result.inconsistent_fields, "warnings": result.warnings},
            source_module="api.routes",
        ))
        logger.warning("Payslip %s has %d consistency warnings", payslip.id, len(result.issues))

    try:
        await save_payslip(db, payslip, warnings=result.warnings, source_filename=file.filename)
    except PayslipExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Busta paga già archiviata.") from exc
    return AnalysisResponse(
        payslip=payslip,
        warnings=result.warnings,
        inconsistent_fields=result.inconsistent_fields,
    )


@router.get("/payslips", response_model=list[PayslipListItem])
async def payslip_list(
    year: int | None = None,
    db: AsyncSession = Depends(get_session),
) -> list[PayslipListItem]:
    return [PayslipListItem.from_payslip(p) for p in await list_payslips(db, year=year)]


@router.get("/payslips/stats", response_model=list[YearlyTotals])
async def payslip_stats(db: AsyncSession = Depends(get_session)) -> list[YearlyTotals]:
    """Yearly totals over the archive."""
    return await yearly_totals(db)


@router.post("/payslips/compare", response_model=NarrativeResponse)
async def compare_payslips(
    body: CompareRequest,
    db: AsyncSession = Depends(get_session),
    gateway: PayslipGateway = Depends(get_gateway),
) -> NarrativeResponse:
    first = await _require_payslip(db, body.first_id)
    second = await _require_payslip(db, body.second_id)
    try:
        text = await gateway.compare(first, second)
    except GatewayError as exc:
        raise http_error(exc) from exc
    return NarrativeResponse(text=text)


@router.get("/payslips/{payslip_id}", response_model=AnalysisResponse)
async def payslip_detail(payslip_id: str, db: AsyncSession = Depends(get_session)) -> AnalysisResponse:
    """A stored payslip with its current consistency warnings."""
    payslip = await _require_payslip(db, payslip_id)
    result = validate_payslip(payslip, await get_profile(db))
    return AnalysisResponse(
        payslip=payslip,
        warnings=result.warnings,
        inconsistent_fields=result.inconsistent_fields,
    )


@router.delete("/payslips/{payslip_id}", status_code=status.HTTP_204_NO_CONTENT)
async def payslip_delete(payslip_id: str, db: AsyncSession = Depends(get_session)) -> None:
    if not await delete_payslip(db, payslip_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Busta paga non trovata.")


@router.get("/payslips/{payslip_id}/summary", response_model=NarrativeResponse)
async def payslip_summary(
    payslip_id: str,
    db: AsyncSession = Depends(get_session),
    gateway: PayslipGateway = Depends(get_gateway),
) -> NarrativeResponse:
    payslip = await _require_payslip(db, payslip_id)
    try:
        text = await gateway.summarize(payslip)
    except GatewayError as exc:
        raise http_error(exc) from exc
    return NarrativeResponse(text=text)


# ── Profile ──────────────────────────────────────────────────────────


@router.get("/profile", response_model=UserProfile)
async def profile_detail(db: AsyncSession = Depends(get_session)) -> UserProfile:
    return await get_profile(db)


@router.put("/profile", response_model=UserProfile)
async def profile_update(body: UserProfile, db: AsyncSession = Depends(get_session)) -> UserProfile:
    return await save_profile(db, body)


# ── Chat ─────────────────────────────────────────────────────────────


@router.get("/chat/history", response_model=list[ChatMessage])
async def chat_history(db: AsyncSession = Depends(get_session)) -> list[ChatMessage]:
    return await get_chat_history(db)


@router.delete("/chat/history")
async def chat_history_clear(db: AsyncSession = Depends(get_session)) -> dict[str, int]:
    return {"deleted": await clear_chat_history(db)}


@router.post("/chat", response_model=None)
async def chat(
    question: str = Form(""),
    file: UploadFile | None = File(None),
    include_tax_tables: bool = Form(False),
    include_archive: bool = Form(False),
    focused_payslip_id: str | None = Form(None),
    compare_first_id: str | None = Form(None),
    compare_second_id: str | None = Form(None),
    db: AsyncSession = Depends(get_session),
    gateway: PayslipGateway = Depends(get_gateway),
) -> ChatAnswer | StreamingResponse:
    """Ask the assistant. Streams text/plain chunks in stream mode, JSON otherwise.

    The question and the answer are both appended to the chat history.
    """
    if not question.strip() and file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Scrivi una domanda per l'assistente.")

    attachment = await _read_upload(file) if file is not None else None
    context = ChatContext(
        payslips=await list_payslips(db) if include_archive else [],
        focused_payslip=await _require_payslip(db, focused_payslip_id) if focused_payslip_id else None,
        payslips_to_compare=(
            (await _require_payslip(db, compare_first_id), await _require_payslip(db, compare_second_id))
            if compare_first_id and compare_second_id
            else None
        ),
        attachment=attachment,
        include_tax_tables=include_tax_tables,
    )

    history = await get_chat_history(db)
    user_text = question.strip() or f"[allegato: {attachment.filename or attachment.mime_type}]"
    await append_chat_message(db, ChatMessage(text=user_text, sender="user"))
    # Committed now so the question survives a failed answer
    await db.commit()

    if settings.gateway.chat_mode == "single":
        try:
            answer = await gateway.chat(history, question, context)
        except GatewayError as exc:
            raise http_error(exc) from exc
        message = ChatMessage(text=answer, sender="ai")
        await append_chat_message(db, message)
        return ChatAnswer(message=message)

    stream = gateway.chat_stream(history, question, context)
    stream.add_done_callback(_store_streamed_answer)
    try:
        first_chunk = await anext(stream)
    except StopAsyncIteration:
        first_chunk = ""
    except GatewayError as exc:
        raise http_error(exc) from exc

    return StreamingResponse(_relay(stream, first_chunk), media_type="text/plain; charset=utf-8")


async def _relay(stream: ChatStream, first_chunk: str) -> AsyncGenerator[str, None]:
    try:
        if first_chunk:
            yield first_chunk
        async for chunk in stream:
            yield chunk
    except GatewayError as exc:
        # Headers are already sent; end the body with the user message
        logger.error("Chat stream failed mid-answer: %s", exc)
        yield f"\n\n{exc.user_message}"
    finally:
        await stream.aclose()


async def _store_streamed_answer(stream: ChatStream) -> None:
    """Append a completed streamed answer to the history in its own session."""
    if stream.state is not StreamState.COMPLETED or not stream.text:
        return
    async with async_session_factory() as db:
        await append_chat_message(db, ChatMessage(text=stream.text, sender="ai"))
        await db.commit()
