"""Local user rows for identities verified by the bearer token.

Tokens are issued elsewhere, so the first request of a new identity creates
its ``users`` row from the token's ``sub`` and ``email`` claims.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from universo.exceptions import NotAuthenticatedError
from universo.models import User

logger = logging.getLogger(__name__)


async def get_user_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower().strip()))
    return result.scalar_one_or_none()


async def get_or_create_user(db: AsyncSession, user_id: uuid.UUID, email: str | None) -> User:
    """Return the user for a verified token, creating the row on first sight.

    Raises :class:`NotAuthenticatedError` for deactivated users, and for
    unknown users whose token carries no usable email.
    """
    user = await get_user_by_id(db, user_id)
    if user is None:
        user = await _create_from_claims(db, user_id, email)
    if not user.is_active:
        raise NotAuthenticatedError("User is inactive")
    return user


async def _create_from_claims(db: AsyncSession, user_id: uuid.UUID, email: str | None) -> User:
    if not email or not email.strip():
        raise NotAuthenticatedError("Unknown user")
    if await get_user_by_email(db, email) is not None:
        logger.warning("Token subject %s claims an email owned by another user", user_id)
        raise NotAuthenticatedError("Unknown user")

    user = User(id=user_id, email=email.lower().strip())
    try:
        async with db.begin_nested():
            db.add(user)
    except IntegrityError:
        # A concurrent request created the same user first.
        existing = await get_user_by_id(db, user_id)
        if existing is None:
            raise NotAuthenticatedError("Unknown user") from None
        return existing
    logger.info("User created from token: id=%s", user_id)
    return user
