"""
Identity boundary.

Authentication is delegated to an external identity provider that sits in
front of the API and forwards the caller's identifier in the ``X-User-Id``
header. Identifiers seen for the first time are recorded in the ``users``
table so that negotiations can reference their creator. Concurrent first
requests from the same identity race on that insert, so it is written as
an ``INSERT ... ON CONFLICT DO NOTHING`` followed by a re-read.
"""
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import IDENTIFIER_LENGTH, User


async def get_current_user(db: AsyncSession, x_user_id: Optional[str]) -> User:
    """Retrieve the current user, creating the row on first sight.

    :param db: SQLAlchemy async session.
    :param x_user_id: User identifier passed via header.
    :return: The loaded or newly created ``User`` object.
    :raises HTTPException: if no usable identifier is provided.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    if len(user_id) > IDENTIFIER_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is too long",
        )
    user = await db.get(User, user_id)
    if user is not None:
        return user
    dialect = db.bind.dialect.name
    insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
    await db.execute(insert(User).values(id=user_id).on_conflict_do_nothing(index_elements=[User.id]))
    return await db.get(User, user_id, populate_existing=True)
