# @TASK P2-T2.3 - Container membership listing and membership writes

"""Container membership aggregation and the only write path for memberships.

``list_members`` joins membership rows with user identity and optional
profile data in one statement, computing the total with a window count so
the page and its total come back in the same round trip.

All membership writes (owner creation, invite, role change, removal) live
here and pass through the role policy guards before any write, so the
single immutable ``owner`` per container cannot be bypassed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from universo.config import get_settings
from universo.constants import MEMBER_SORT_FIELDS, MemberRole, Permission, SortOrder
from universo.exceptions import ConflictError, ForbiddenError, InvalidReferenceError, NotFoundError
from universo.models import ContainerMembership, Profile, User
from universo.services import link_store
from universo.services.access_resolver import apply_global_access, resolve_container_access
from universo.services.role_policy import (
    ensure_assignable_role,
    ensure_mutable_membership,
    has_permission,
    normalize_role,
)
from universo.utils.pagination import (
    LIKE_ESCAPE_CHAR,
    clamp_offset,
    contains_pattern,
    parse_int_safe,
    parse_sort_order,
)

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "created": ContainerMembership.created_at,
    "role": ContainerMembership.role,
    "email": User.email,
    "nickname": Profile.nickname,
}


@dataclass(frozen=True)
class MemberListParams:
    limit: int
    offset: int = 0
    sort_by: str = "created"
    sort_order: SortOrder = SortOrder.DESC
    search: str | None = None

    @classmethod
    def from_query(
        cls,
        limit: object = None,
        offset: object = None,
        sort_by: object = None,
        sort_order: object = None,
        search: str | None = None,
    ) -> MemberListParams:
        """Build params from raw query values, clamping and whitelisting them.

        An unknown ``sort_by`` falls back to ``created`` descending.
        """
        settings = get_settings()
        if isinstance(sort_by, str) and sort_by in MEMBER_SORT_FIELDS:
            key, order = sort_by, parse_sort_order(sort_order)
        else:
            key, order = "created", SortOrder.DESC
        term = search.strip() if isinstance(search, str) else None
        return cls(
            limit=parse_int_safe(limit, settings.MEMBER_LIST_DEFAULT_LIMIT, 1, settings.MEMBER_LIST_MAX_LIMIT),
            offset=clamp_offset(offset),
            sort_by=key,
            sort_order=order,
            search=term or None,
        )


@dataclass(frozen=True)
class MemberView:
    id: uuid.UUID
    user_id: uuid.UUID
    email: str
    display_name: str
    role: MemberRole
    comment: str | None
    created_at: datetime


@dataclass(frozen=True)
class MemberPage:
    members: list[MemberView]
    total: int


def display_name_of(nickname: str | None, first_name: str | None, last_name: str | None) -> str:
    if nickname:
        return nickname
    return " ".join(part for part in (first_name, last_name) if part)


def _search_clause(term: str):
    pattern = contains_pattern(term)
    return or_(
        User.email.ilike(pattern, escape=LIKE_ESCAPE_CHAR),
        Profile.nickname.ilike(pattern, escape=LIKE_ESCAPE_CHAR),
        Profile.first_name.ilike(pattern, escape=LIKE_ESCAPE_CHAR),
        Profile.last_name.ilike(pattern, escape=LIKE_ESCAPE_CHAR),
    )


async def list_members(
    db: AsyncSession,
    container_id: uuid.UUID,
    params: MemberListParams | None = None,
) -> MemberPage:
    """Page of members of one container with user email and display name."""
    if params is None:
        params = MemberListParams.from_query()

    conditions = [ContainerMembership.container_id == container_id]
    if params.search:
        conditions.append(_search_clause(params.search))

    sort_column = _SORT_COLUMNS[params.sort_by]
    ordering = sort_column.asc() if params.sort_order == SortOrder.ASC else sort_column.desc()

    stmt = (
        select(
            ContainerMembership.id,
            ContainerMembership.user_id,
            ContainerMembership.role,
            ContainerMembership.comment,
            ContainerMembership.created_at,
            User.email,
            Profile.nickname,
            Profile.first_name,
            Profile.last_name,
            func.count().over().label("total_count"),
        )
        .join(User, User.id == ContainerMembership.user_id)
        .outerjoin(Profile, Profile.user_id == ContainerMembership.user_id)
        .where(*conditions)
        .order_by(ordering, ContainerMembership.id)
        .limit(params.limit)
        .offset(params.offset)
    )
    rows = (await db.execute(stmt)).all()

    if rows:
        total = rows[0].total_count
    else:
        # Offset past the end returns no rows to carry the window count.
        count_stmt = (
            select(func.count())
            .select_from(ContainerMembership)
            .join(User, User.id == ContainerMembership.user_id)
            .outerjoin(Profile, Profile.user_id == ContainerMembership.user_id)
            .where(*conditions)
        )
        total = (await db.execute(count_stmt)).scalar_one() if params.offset else 0

    members = [
        MemberView(
            id=row.id,
            user_id=row.user_id,
            email=row.email,
            display_name=display_name_of(row.nickname, row.first_name, row.last_name),
            role=normalize_role(row.role),
            comment=row.comment,
            created_at=row.created_at,
        )
        for row in rows
    ]
    return MemberPage(members=members, total=total)


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower().strip()))
    return result.scalar_one_or_none()


async def _get_container_membership(
    db: AsyncSession,
    container_id: uuid.UUID,
    membership_id: uuid.UUID,
) -> ContainerMembership:
    result = await db.execute(
        select(ContainerMembership).where(
            ContainerMembership.id == membership_id,
            ContainerMembership.container_id == container_id,
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise NotFoundError("Member not found")
    return membership


async def _ensure_actor_is_member(
    db: AsyncSession,
    actor_id: uuid.UUID,
    container_id: uuid.UUID,
) -> MemberRole:
    verdict = await apply_global_access(db, actor_id, await resolve_container_access(db, actor_id, container_id))
    if not verdict.granted or verdict.role is None:
        raise ForbiddenError("Access denied to this container")
    return verdict.role


def _ensure_can_manage(actor_role: MemberRole) -> None:
    if not has_permission(actor_role, Permission.MANAGE_MEMBERS):
        raise ForbiddenError("Your role does not allow managing members")


async def add_owner_membership(
    db: AsyncSession,
    container_id: uuid.UUID,
    user_id: uuid.UUID,
) -> ContainerMembership:
    """Create the owner membership of a freshly created container.

    This is the only code path that writes the ``owner`` role.
    """
    membership = ContainerMembership(
        container_id=container_id,
        user_id=user_id,
        role=MemberRole.OWNER,
    )
    db.add(membership)
    await db.flush()
    return membership


async def invite_member(
    db: AsyncSession,
    actor_id: uuid.UUID,
    container_id: uuid.UUID,
    email: str,
    role: str | None = MemberRole.MEMBER,
    comment: str | None = None,
) -> ContainerMembership:
    """Add an existing user to a container.

    Raises:
        ForbiddenError: actor is not a member or lacks ``manageMembers``.
        OwnerImmutableError: ``role`` is ``owner``.
        InvalidReferenceError: no user with that email.
        ConflictError: the user is already a member.
    """
    actor_role = await _ensure_actor_is_member(db, actor_id, container_id)
    assigned_role = ensure_assignable_role(role)
    _ensure_can_manage(actor_role)

    user = await get_user_by_email(db, email)
    if user is None:
        raise InvalidReferenceError(f"No user with email {email}")

    if await link_store.find_membership(db, container_id, user.id) is not None:
        raise ConflictError("User is already a member of this container")

    membership = ContainerMembership(
        container_id=container_id,
        user_id=user.id,
        role=assigned_role,
        comment=comment,
    )
    try:
        async with db.begin_nested():
            db.add(membership)
    except IntegrityError as exc:
        raise ConflictError("User is already a member of this container") from exc

    logger.info("Member invited: container=%s user=%s role=%s by=%s", container_id, user.id, assigned_role, actor_id)
    return membership


async def update_member(
    db: AsyncSession,
    actor_id: uuid.UUID,
    container_id: uuid.UUID,
    membership_id: uuid.UUID,
    role: str | None = None,
    comment: str | None = None,
) -> ContainerMembership:
    """Change a member's role and/or comment.

    The owner membership can never be changed, and no membership can be
    promoted to owner, whatever the actor's own role.
    """
    actor_role = await _ensure_actor_is_member(db, actor_id, container_id)
    membership = await _get_container_membership(db, container_id, membership_id)
    ensure_mutable_membership(membership)
    new_role = ensure_assignable_role(role) if role is not None else None
    _ensure_can_manage(actor_role)

    if new_role is not None:
        membership.role = new_role
    if comment is not None:
        membership.comment = comment
    await db.flush()

    logger.info("Member updated: container=%s membership=%s role=%s by=%s", container_id, membership_id, new_role, actor_id)
    return membership


async def remove_member(
    db: AsyncSession,
    actor_id: uuid.UUID,
    container_id: uuid.UUID,
    membership_id: uuid.UUID,
) -> None:
    """Remove a non-owner member from a container."""
    actor_role = await _ensure_actor_is_member(db, actor_id, container_id)
    membership = await _get_container_membership(db, container_id, membership_id)
    ensure_mutable_membership(membership)
    _ensure_can_manage(actor_role)

    await db.delete(membership)
    await db.flush()
    logger.info("Member removed: container=%s membership=%s by=%s", container_id, membership_id, actor_id)
