"""
Conversation log.

Messages are append-only and totally ordered per negotiation by a
``sequence`` number. The sequence is taken from the negotiation row with
a single ``UPDATE ... WHERE status = 'active' RETURNING`` statement, which
both checks that the negotiation accepts messages and reserves the next
position. A concurrent transition to a terminal status therefore either
happens before the append (which then fails) or after it.
"""
from __future__ import annotations

import logging
import math
from typing import AsyncIterator, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..events import emit_event
from ..exceptions import (
    NegotiationNotActive,
    NotFound,
    SentimentAlreadyAttached,
    ValidationError,
)
from ..models import (
    ConversationMessage,
    EventType,
    MessageKind,
    Negotiation,
    NegotiationStatus,
)

SENTIMENT_MIN = -1.0
SENTIMENT_MAX = 1.0

logger = logging.getLogger(__name__)


def _coerce_kind(kind: Union[str, MessageKind]) -> MessageKind:
    if isinstance(kind, MessageKind):
        return kind
    try:
        return MessageKind(kind)
    except ValueError as exc:
        allowed = ", ".join(k.value for k in MessageKind)
        raise ValidationError(
            f"Unknown message type '{kind}'; expected one of {allowed}",
            details={"field": "message_type"},
        ) from exc


async def _reserve_sequence(db: AsyncSession, negotiation_id: int) -> int:
    result = await db.execute(
        update(Negotiation)
        .where(
            Negotiation.id == negotiation_id,
            Negotiation.status == NegotiationStatus.active,
        )
        .values(message_count=Negotiation.message_count + 1)
        .returning(Negotiation.message_count)
        .execution_options(synchronize_session=False)
    )
    sequence = result.scalar_one_or_none()
    if sequence is not None:
        return sequence
    negotiation = await db.get(Negotiation, negotiation_id, populate_existing=True)
    if negotiation is None:
        raise NotFound("Negotiation", negotiation_id)
    raise NegotiationNotActive(negotiation_id, negotiation.status.value)


async def append_message(
    db: AsyncSession,
    negotiation_id: int,
    sender_id: str,
    body: str,
    kind: Union[str, MessageKind] = MessageKind.text,
) -> ConversationMessage:
    """Append a message to an active negotiation.

    :raises ValidationError: blank body or unknown kind.
    :raises NotFound: the negotiation does not exist.
    :raises NegotiationNotActive: the negotiation is completed or cancelled.
    """
    text = (body or "").strip()
    if not text:
        raise ValidationError("Message body is required", details={"field": "message"})
    message_kind = _coerce_kind(kind)
    sequence = await _reserve_sequence(db, negotiation_id)
    message = ConversationMessage(
        negotiation_id=negotiation_id,
        sequence=sequence,
        sender_id=sender_id,
        message=text,
        message_type=message_kind,
    )
    db.add(message)
    await db.flush()
    await emit_event(
        db,
        EventType.message_appended,
        sender_id,
        negotiation_id=negotiation_id,
        payload={"message_id": message.id, "sequence": sequence, "message_type": message_kind.value},
    )
    return message


def _page_limit(limit: Optional[int]) -> int:
    settings = get_settings()
    if limit is None:
        return settings.conversation_page_size
    if limit < 1:
        raise ValidationError("limit must be a positive integer", details={"field": "limit"})
    return min(limit, settings.conversation_max_page_size)


async def list_messages(
    db: AsyncSession,
    negotiation_id: int,
    after: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[ConversationMessage]:
    """Return one page of the log in sequence order.

    :param after: exclusive sequence cursor; ``None`` starts at the beginning.
    :param limit: page size, defaulting to ``CONVERSATION_PAGE_SIZE`` and
        capped at ``CONVERSATION_MAX_PAGE_SIZE``.
    """
    query = select(ConversationMessage).where(ConversationMessage.negotiation_id == negotiation_id)
    if after is not None:
        query = query.where(ConversationMessage.sequence > after)
    query = query.order_by(ConversationMessage.sequence).limit(_page_limit(limit))
    result = await db.execute(query)
    return list(result.scalars().all())


async def iter_messages(
    db: AsyncSession,
    negotiation_id: int,
    page_size: Optional[int] = None,
) -> AsyncIterator[ConversationMessage]:
    """Iterate over the whole log lazily, one page at a time.

    Every call starts again from the first message, so the iterator can
    be re-created at any time to observe the current log.
    """
    limit = _page_limit(page_size)
    cursor: Optional[int] = None
    while True:
        page = await list_messages(db, negotiation_id, after=cursor, limit=limit)
        for message in page:
            yield message
        if len(page) < limit:
            return
        cursor = page[-1].sequence


async def recent_history(
    db: AsyncSession,
    negotiation_id: int,
    before_sequence: int,
    limit: int,
) -> List[ConversationMessage]:
    """Return up to ``limit`` messages preceding ``before_sequence``, oldest first."""
    result = await db.execute(
        select(ConversationMessage)
        .where(
            ConversationMessage.negotiation_id == negotiation_id,
            ConversationMessage.sequence < before_sequence,
        )
        .order_by(ConversationMessage.sequence.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def get_message(db: AsyncSession, message_id: int, refresh: bool = False) -> ConversationMessage:
    message = await db.get(ConversationMessage, message_id, populate_existing=refresh)
    if message is None:
        raise NotFound("Message", message_id)
    return message


async def attach_sentiment(db: AsyncSession, message_id: int, score: float) -> ConversationMessage:
    """Record the sentiment score of a message exactly once.

    :raises ValidationError: the score is not a finite number in [-1, 1].
    :raises NotFound: unknown message.
    :raises SentimentAlreadyAttached: the message already has a score.
    """
    try:
        value = float(score)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Sentiment score must be a number", details={"field": "score"}) from exc
    if not math.isfinite(value) or not SENTIMENT_MIN <= value <= SENTIMENT_MAX:
        raise ValidationError(
            f"Sentiment score must be between {SENTIMENT_MIN} and {SENTIMENT_MAX}",
            details={"field": "score", "value": score},
        )
    result = await db.execute(
        update(ConversationMessage)
        .where(
            ConversationMessage.id == message_id,
            ConversationMessage.sentiment_score.is_(None),
        )
        .values(sentiment_score=value)
        .returning(ConversationMessage.negotiation_id)
        .execution_options(synchronize_session=False)
    )
    negotiation_id = result.scalar_one_or_none()
    if negotiation_id is None:
        # Distinguish a missing message from one that was already scored
        await get_message(db, message_id)
        raise SentimentAlreadyAttached(message_id)
    await emit_event(
        db,
        EventType.sentiment_attached,
        negotiation_id=negotiation_id,
        payload={"message_id": message_id, "sentiment_score": value},
    )
    await db.flush()
    return await get_message(db, message_id, refresh=True)
