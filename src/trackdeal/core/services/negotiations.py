"""
Negotiation store.

Creates negotiations, resolves them for a caller and applies status
transitions. Status changes go through a compare-and-set ``UPDATE`` so
that a transition can never interleave with a concurrent transition or
message append on the same negotiation.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Union

from sqlalchemy import desc, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..events import emit_event
from ..exceptions import InvalidTransition, NotFound, ValidationError
from ..models import (
    IDENTIFIER_LENGTH,
    EventType,
    Negotiation,
    NegotiationParticipant,
    NegotiationStatus,
    User,
)
from ..state_machine import check_transition, coerce_status

TITLE_MAX_LENGTH = 200

logger = logging.getLogger(__name__)


def normalize_participants(participants: Iterable[str]) -> List[str]:
    """Strip identifiers, drop blanks and duplicates, keep first-seen order."""
    seen: List[str] = []
    for raw in participants:
        participant = (raw or "").strip()
        if participant and participant not in seen:
            seen.append(participant)
    return seen


async def create_negotiation(
    db: AsyncSession,
    user: User,
    title: str,
    participants: Iterable[str],
    description: Optional[str] = None,
    ai_assistant_enabled: bool = True,
) -> Negotiation:
    """Open a new negotiation in the ``active`` status.

    :raises ValidationError: if the title is blank or no participant remains
        after normalisation. Nothing is persisted in that case.
    """
    clean_title = (title or "").strip()
    if not clean_title:
        raise ValidationError("Title is required", details={"field": "title"})
    if len(clean_title) > TITLE_MAX_LENGTH:
        raise ValidationError(
            f"Title must be at most {TITLE_MAX_LENGTH} characters", details={"field": "title"}
        )
    clean_participants = normalize_participants(participants)
    if not clean_participants:
        raise ValidationError(
            "At least one participant is required", details={"field": "participants"}
        )
    too_long = [p for p in clean_participants if len(p) > IDENTIFIER_LENGTH]
    if too_long:
        raise ValidationError(
            f"Participant identifiers must be at most {IDENTIFIER_LENGTH} characters",
            details={"field": "participants", "invalid": too_long},
        )
    clean_description = (description or "").strip() or None

    negotiation = Negotiation(
        title=clean_title,
        description=clean_description,
        created_by=user.id,
        status=NegotiationStatus.active,
        ai_assistant_enabled=ai_assistant_enabled,
        message_count=0,
        participant_links=[
            NegotiationParticipant(participant_id=participant, position=position)
            for position, participant in enumerate(clean_participants)
        ],
    )
    db.add(negotiation)
    await db.flush()
    await emit_event(
        db,
        EventType.negotiation_created,
        user.id,
        negotiation_id=negotiation.id,
        payload={"participants": clean_participants, "ai_assistant_enabled": ai_assistant_enabled},
    )
    logger.info("Negotiation %s opened by %s", negotiation.id, user.id)
    return negotiation


async def get_negotiation(
    db: AsyncSession,
    negotiation_id: int,
    user: Optional[User] = None,
    refresh: bool = False,
) -> Negotiation:
    """Load a negotiation, optionally restricted to its members.

    Callers who are neither the creator nor a participant get ``NotFound``
    so that the existence of other people's negotiations is not leaked.
    """
    negotiation = await db.get(Negotiation, negotiation_id, populate_existing=refresh)
    if negotiation is None:
        raise NotFound("Negotiation", negotiation_id)
    if user is not None and not negotiation.is_member(user.id):
        raise NotFound("Negotiation", negotiation_id)
    return negotiation


async def list_negotiations(db: AsyncSession, user: User) -> List[Negotiation]:
    """Return the negotiations the user created or participates in, newest first."""
    participating = select(NegotiationParticipant.negotiation_id).where(
        NegotiationParticipant.participant_id == user.id
    )
    result = await db.execute(
        select(Negotiation)
        .where(or_(Negotiation.created_by == user.id, Negotiation.id.in_(participating)))
        .order_by(desc(Negotiation.created_at), desc(Negotiation.id))
    )
    return list(result.scalars().all())


async def transition_negotiation(
    db: AsyncSession,
    negotiation_id: int,
    target: Union[str, NegotiationStatus],
    user: Optional[User] = None,
) -> Negotiation:
    """Move an active negotiation to ``completed`` or ``cancelled``.

    :raises NotFound: unknown id, or the user is not a member.
    :raises InvalidTransition: the negotiation is already terminal or the
        target is not an allowed successor.
    """
    negotiation = await get_negotiation(db, negotiation_id, user)
    current = negotiation.status
    target_status = coerce_status(target, current)
    check_transition(current, target_status)

    result = await db.execute(
        update(Negotiation)
        .where(Negotiation.id == negotiation_id, Negotiation.status == current)
        .values(status=target_status, closed_at=datetime.utcnow())
        .returning(Negotiation.id)
        .execution_options(synchronize_session=False)
    )
    if result.scalar_one_or_none() is None:
        # Someone else moved it between our read and the update
        negotiation = await get_negotiation(db, negotiation_id, refresh=True)
        raise InvalidTransition(
            negotiation.status.value,
            target_status.value,
            reason=f"Negotiation is already {negotiation.status.value}",
        )
    await emit_event(
        db,
        EventType.negotiation_status_changed,
        user.id if user else None,
        negotiation_id=negotiation_id,
        payload={"from": current.value, "to": target_status.value},
    )
    await db.flush()
    logger.info("Negotiation %s moved %s -> %s", negotiation_id, current.value, target_status.value)
    return await get_negotiation(db, negotiation_id, refresh=True)
