"""
API dependencies.

Reusable dependencies for FastAPI endpoints: a request-scoped database
session, the authenticated user, and the process-wide analysis dispatcher
and broadcaster stored on ``app.state`` by the application factory.
"""
from __future__ import annotations

from typing import Annotated, AsyncIterator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.db import get_db_session
from ..core.models import User
from ..core.services import auth as auth_service
from ..core.services.broadcast import NegotiationBroadcaster
from ..core.services.dispatcher import AnalysisDispatcher


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency that yields a database session."""
    async with get_db_session() as session:
        yield session


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(
    db: DatabaseSession,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> User:
    """Dependency that resolves the authenticated user."""
    return await auth_service.get_current_user(db, x_user_id)


CurrentUser = Annotated[User, Depends(get_current_user)]


def get_analysis_dispatcher(request: Request) -> AnalysisDispatcher:
    return request.app.state.analysis_dispatcher


def get_broadcaster(request: Request) -> NegotiationBroadcaster:
    return request.app.state.broadcaster


Dispatcher = Annotated[AnalysisDispatcher, Depends(get_analysis_dispatcher)]
Broadcaster = Annotated[NegotiationBroadcaster, Depends(get_broadcaster)]
