"""
Negotiation API router.

Endpoints for opening negotiations, reading them, closing them and
working with their conversation log. Domain errors raised by the services
are rendered by the exception handler registered in ``api/main.py``.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Path, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import select

from ..dependencies import Broadcaster, CurrentUser, DatabaseSession, Dispatcher
from ..sse import sse_comment, sse_json
from ...core.models import Event, Negotiation
from ...core.schemas import (
    ConversationMessageOut,
    CreateNegotiationRequest,
    NegotiationDetail,
    NegotiationEventOut,
    NegotiationOut,
    PostMessageRequest,
    UpdateNegotiationStatusRequest,
)
from ...core.services import conversations as conversations_service
from ...core.services import negotiations as negotiations_service
from ...core.services.broadcast import NegotiationBroadcaster
from ...core.services.dispatcher import AnalysisDispatcher, message_payload
from ...core.state_machine import is_terminal

STREAM_PING_SECONDS = 15.0

router = APIRouter(prefix="/negotiations", tags=["negotiations"])


def _detail(negotiation: Negotiation, dispatcher: AnalysisDispatcher) -> NegotiationDetail:
    detail = NegotiationDetail.model_validate(negotiation)
    detail.analysis_pending = dispatcher.is_pending(negotiation.id)
    return detail


@router.get("", response_model=list[NegotiationOut])
async def list_negotiations(
    db: DatabaseSession,
    user: CurrentUser,
) -> list[NegotiationOut]:
    """List negotiations the current user created or participates in."""
    negotiations = await negotiations_service.list_negotiations(db, user)
    return [NegotiationOut.model_validate(item) for item in negotiations]


@router.post("", response_model=NegotiationDetail)
async def create_negotiation(
    req: CreateNegotiationRequest,
    db: DatabaseSession,
    user: CurrentUser,
    dispatcher: Dispatcher,
) -> NegotiationDetail:
    """Open a new negotiation."""
    negotiation = await negotiations_service.create_negotiation(
        db,
        user,
        title=req.title,
        description=req.description,
        participants=req.participants,
        ai_assistant_enabled=req.ai_assistant_enabled,
    )
    return _detail(negotiation, dispatcher)


@router.get("/{negotiation_id}", response_model=NegotiationDetail)
async def get_negotiation(
    db: DatabaseSession,
    user: CurrentUser,
    dispatcher: Dispatcher,
    negotiation_id: int = Path(..., description="Identifier of the negotiation."),
) -> NegotiationDetail:
    """Get a negotiation, including whether an AI analysis is in flight."""
    negotiation = await negotiations_service.get_negotiation(db, negotiation_id, user)
    return _detail(negotiation, dispatcher)


@router.patch("/{negotiation_id}", response_model=NegotiationDetail)
async def update_negotiation_status(
    req: UpdateNegotiationStatusRequest,
    db: DatabaseSession,
    user: CurrentUser,
    dispatcher: Dispatcher,
    broadcaster: Broadcaster,
    negotiation_id: int = Path(..., description="Identifier of the negotiation."),
) -> NegotiationDetail:
    """Move the negotiation to ``completed`` or ``cancelled``."""
    negotiation = await negotiations_service.transition_negotiation(
        db, negotiation_id, req.status, user
    )
    await db.commit()
    detail = _detail(negotiation, dispatcher)
    broadcaster.publish(negotiation_id, "status", detail.model_dump(mode="json"))
    return detail


@router.get("/{negotiation_id}/conversations", response_model=list[ConversationMessageOut])
async def list_conversation(
    db: DatabaseSession,
    user: CurrentUser,
    negotiation_id: int = Path(..., description="Identifier of the negotiation."),
    after: Optional[int] = Query(None, ge=0, description="Return messages after this sequence number."),
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of messages to return."),
) -> list[ConversationMessageOut]:
    """List conversation messages in the order they were appended."""
    await negotiations_service.get_negotiation(db, negotiation_id, user)
    messages = await conversations_service.list_messages(db, negotiation_id, after=after, limit=limit)
    return [ConversationMessageOut.model_validate(message) for message in messages]


@router.post("/{negotiation_id}/conversations", response_model=ConversationMessageOut)
async def post_message(
    req: PostMessageRequest,
    db: DatabaseSession,
    user: CurrentUser,
    dispatcher: Dispatcher,
    broadcaster: Broadcaster,
    negotiation_id: int = Path(..., description="Identifier of the negotiation."),
) -> ConversationMessageOut:
    """Append a message; AI analysis runs in the background afterwards."""
    negotiation = await negotiations_service.get_negotiation(db, negotiation_id, user)
    ai_enabled = negotiation.ai_assistant_enabled
    message = await conversations_service.append_message(
        db, negotiation_id, user.id, req.message, req.message_type
    )
    # The analysis task reads the message through its own session
    await db.commit()
    out = ConversationMessageOut.model_validate(message)
    broadcaster.publish(negotiation_id, "message", message_payload(message))
    if dispatcher.should_analyze(ai_enabled, message.message_type):
        dispatcher.schedule(negotiation_id, message.id)
    return out


@router.get("/{negotiation_id}/events", response_model=list[NegotiationEventOut])
async def list_negotiation_events(
    db: DatabaseSession,
    user: CurrentUser,
    negotiation_id: int = Path(..., description="Identifier of the negotiation."),
) -> list[NegotiationEventOut]:
    """List audit events for a negotiation."""
    await negotiations_service.get_negotiation(db, negotiation_id, user)
    result = await db.execute(
        select(Event).where(Event.negotiation_id == negotiation_id).order_by(Event.id)
    )
    return [NegotiationEventOut.model_validate(event) for event in result.scalars().all()]


async def _stream_negotiation(
    request: Request,
    broadcaster: NegotiationBroadcaster,
    negotiation_id: int,
) -> AsyncIterator[str]:
    async with broadcaster.subscribe(negotiation_id) as queue:
        yield sse_comment("subscribed")
        while True:
            if await request.is_disconnected():
                return
            try:
                event, payload = await asyncio.wait_for(queue.get(), timeout=STREAM_PING_SECONDS)
            except asyncio.TimeoutError:
                yield sse_comment("ping")
                continue
            yield sse_json(event, payload)
            if event == "status" and payload.get("status") in {"completed", "cancelled"}:
                return


@router.get("/{negotiation_id}/stream")
async def stream_negotiation(
    request: Request,
    db: DatabaseSession,
    user: CurrentUser,
    broadcaster: Broadcaster,
    negotiation_id: int = Path(..., description="Identifier of the negotiation."),
) -> StreamingResponse:
    """Push new messages, sentiment scores and status changes as SSE."""
    negotiation = await negotiations_service.get_negotiation(db, negotiation_id, user)
    # The request session outlives the stream; release any write it holds
    await db.commit()
    if is_terminal(negotiation.status):
        async def _closed() -> AsyncIterator[str]:
            yield sse_json("status", NegotiationOut.model_validate(negotiation).model_dump(mode="json"))

        return StreamingResponse(_closed(), media_type="text/event-stream")
    return StreamingResponse(
        _stream_negotiation(request, broadcaster, negotiation_id),
        media_type="text/event-stream",
    )
