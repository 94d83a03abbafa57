"""
Event logging utilities.

Events are append-only records describing notable actions: a negotiation
being opened or closed, messages being appended and the outcome of
background analysis. They back the ``/negotiations/{id}/events`` audit
endpoint.
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .models import Event, EventType


async def emit_event(
    session: AsyncSession,
    event_type: EventType,
    user_id: Optional[str] = None,
    negotiation_id: Optional[int] = None,
    payload: Optional[dict[str, Any]] = None,
) -> Event:
    """Persist an event record in the database.

    :param session: SQLAlchemy async session to use for DB operations.
    :param event_type: The type of the event being emitted.
    :param user_id: Identifier of the acting user, if any.
    :param negotiation_id: Identifier of the negotiation concerned.
    :param payload: Arbitrary JSON-serialisable dictionary with event details.
    :return: The created Event instance.
    """
    event = Event(
        user_id=user_id,
        negotiation_id=negotiation_id,
        event_type=event_type,
        payload=payload or {},
    )
    session.add(event)
    # Let the caller handle commit/rollback
    return event
