"""Instance-wide roles that bypass container membership.

A user holding any role with ``has_global_access`` reaches every container
of every hierarchy as if they were its owner. ``GLOBAL_ADMIN_ENABLED=false``
switches the bypass off without touching role assignments.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from universo.config import get_settings
from universo.models import GlobalRole, UserGlobalRole

logger = logging.getLogger(__name__)


def _global_role_name_query(user_id: uuid.UUID):
    return (
        select(GlobalRole.name)
        .join(UserGlobalRole, UserGlobalRole.role_id == GlobalRole.id)
        .where(UserGlobalRole.user_id == user_id, GlobalRole.has_global_access.is_(True))
        .order_by(GlobalRole.name)
        .limit(1)
    )


async def get_global_role_name(db: AsyncSession, user_id: uuid.UUID) -> str | None:
    """Name of the user's global-access role, or None.

    Returns None whenever global access is disabled.
    """
    if not get_settings().GLOBAL_ADMIN_ENABLED:
        return None
    result = await db.execute(_global_role_name_query(user_id))
    return result.scalar_one_or_none()


async def has_global_access(db: AsyncSession, user_id: uuid.UUID) -> bool:
    return await get_global_role_name(db, user_id) is not None


async def get_or_create_role(db: AsyncSession, name: str, grants_global_access: bool = False) -> GlobalRole:
    result = await db.execute(select(GlobalRole).where(GlobalRole.name == name))
    role = result.scalar_one_or_none()
    if role is None:
        role = GlobalRole(name=name, has_global_access=grants_global_access)
        db.add(role)
        await db.flush()
    return role


async def grant_global_role(
    db: AsyncSession,
    user_id: uuid.UUID,
    role_name: str,
    grants_global_access: bool = True,
) -> UserGlobalRole:
    """Assign an instance-wide role, creating the role on first use. Idempotent."""
    role = await get_or_create_role(db, role_name, grants_global_access)
    result = await db.execute(
        select(UserGlobalRole).where(UserGlobalRole.user_id == user_id, UserGlobalRole.role_id == role.id)
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing

    assignment = UserGlobalRole(user_id=user_id, role_id=role.id)
    try:
        async with db.begin_nested():
            db.add(assignment)
    except IntegrityError:
        result = await db.execute(
            select(UserGlobalRole).where(UserGlobalRole.user_id == user_id, UserGlobalRole.role_id == role.id)
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            raise
        return existing
    logger.info("Global role granted: user=%s role=%s", user_id, role_name)
    return assignment
