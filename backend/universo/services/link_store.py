"""Link store: reads and writes over the generic ``links`` association table
and the container membership table.

Every link is directional: the left side is the higher level of the
hierarchy. Duplicate links are prevented by the ``uq_links_left_right``
unique constraint; :func:`create_link` inserts inside a SAVEPOINT and, when a
concurrent request won the race, returns the row that request created.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from universo.models import ContainerMembership, Link, Node

logger = logging.getLogger(__name__)


async def find_links_by_left_id(
    db: AsyncSession,
    left_kind: str,
    left_ids: Iterable[uuid.UUID],
    right_kind: str,
) -> list[Link]:
    """Links from the given higher-level nodes down to ``right_kind``."""
    ids = list(left_ids)
    if not ids:
        return []
    result = await db.execute(
        select(Link)
        .where(
            Link.left_kind == left_kind,
            Link.left_id.in_(ids),
            Link.right_kind == right_kind,
        )
        .order_by(Link.sort_order, Link.created_at)
    )
    return list(result.scalars().all())


async def find_links_by_right_id(
    db: AsyncSession,
    right_kind: str,
    right_ids: Iterable[uuid.UUID],
    left_kind: str,
) -> list[Link]:
    """Links from the given lower-level nodes up to ``left_kind``."""
    ids = list(right_ids)
    if not ids:
        return []
    result = await db.execute(
        select(Link)
        .where(
            Link.right_kind == right_kind,
            Link.right_id.in_(ids),
            Link.left_kind == left_kind,
        )
        .order_by(Link.created_at)
    )
    return list(result.scalars().all())


async def find_link(
    db: AsyncSession,
    left_kind: str,
    left_id: uuid.UUID,
    right_kind: str,
    right_id: uuid.UUID,
) -> Link | None:
    result = await db.execute(
        select(Link).where(
            Link.left_kind == left_kind,
            Link.left_id == left_id,
            Link.right_kind == right_kind,
            Link.right_id == right_id,
        )
    )
    return result.scalar_one_or_none()


async def find_membership(
    db: AsyncSession,
    container_id: uuid.UUID,
    user_id: uuid.UUID,
) -> ContainerMembership | None:
    result = await db.execute(
        select(ContainerMembership).where(
            ContainerMembership.container_id == container_id,
            ContainerMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def find_first_membership(
    db: AsyncSession,
    container_ids: Sequence[uuid.UUID],
    user_id: uuid.UUID,
) -> ContainerMembership | None:
    """Membership of the user in any of ``container_ids``.

    When several match, the one whose container comes first in
    ``container_ids`` wins.
    """
    if not container_ids:
        return None
    result = await db.execute(
        select(ContainerMembership).where(
            ContainerMembership.container_id.in_(list(container_ids)),
            ContainerMembership.user_id == user_id,
        )
    )
    by_container = {m.container_id: m for m in result.scalars().all()}
    for container_id in container_ids:
        membership = by_container.get(container_id)
        if membership is not None:
            return membership
    return None


async def find_user_memberships(
    db: AsyncSession,
    user_id: uuid.UUID,
    container_kind: str | None = None,
) -> list[ContainerMembership]:
    """All memberships of a user, optionally restricted to one container kind."""
    stmt = select(ContainerMembership).where(ContainerMembership.user_id == user_id)
    if container_kind is not None:
        stmt = stmt.join(Node, Node.id == ContainerMembership.container_id).where(Node.kind == container_kind)
    result = await db.execute(stmt.order_by(ContainerMembership.created_at))
    return list(result.scalars().all())


async def create_link(
    db: AsyncSession,
    left_kind: str,
    left_id: uuid.UUID,
    right_kind: str,
    right_id: uuid.UUID,
    sort_order: int = 1,
) -> tuple[Link, bool]:
    """Create a link unless it already exists.

    Returns ``(link, created)``.
    """
    existing = await find_link(db, left_kind, left_id, right_kind, right_id)
    if existing is not None:
        return existing, False

    link = Link(
        left_kind=left_kind,
        left_id=left_id,
        right_kind=right_kind,
        right_id=right_id,
        sort_order=sort_order,
    )
    try:
        async with db.begin_nested():
            db.add(link)
    except IntegrityError:
        # A concurrent request inserted the same link between our check and insert.
        existing = await find_link(db, left_kind, left_id, right_kind, right_id)
        if existing is None:
            raise
        logger.info(
            "Link already created concurrently: %s:%s -> %s:%s",
            left_kind, left_id, right_kind, right_id,
        )
        return existing, False
    return link, True


async def delete_link(
    db: AsyncSession,
    left_kind: str,
    left_id: uuid.UUID,
    right_kind: str,
    right_id: uuid.UUID,
) -> bool:
    """Delete one link. Returns False if it did not exist."""
    existing = await find_link(db, left_kind, left_id, right_kind, right_id)
    if existing is None:
        return False
    await db.delete(existing)
    await db.flush()
    return True


async def delete_links_for(db: AsyncSession, kind: str, node_id: uuid.UUID) -> int:
    """Delete every link touching a node on either side. Returns the count removed."""
    result = await db.execute(
        delete(Link).where(
            or_(
                (Link.left_kind == kind) & (Link.left_id == node_id),
                (Link.right_kind == kind) & (Link.right_id == node_id),
            )
        )
    )
    return result.rowcount  # type: ignore[return-value]


async def delete_links_by_right_id(
    db: AsyncSession,
    right_kind: str,
    right_id: uuid.UUID,
    left_kind: str,
) -> int:
    """Remove all links from ``left_kind`` nodes to one lower-level node."""
    result = await db.execute(
        delete(Link).where(
            Link.right_kind == right_kind,
            Link.right_id == right_id,
            Link.left_kind == left_kind,
        )
    )
    return result.rowcount  # type: ignore[return-value]


def _coerce_sort_order(value: object) -> int:
    try:
        number = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return 1
    return number or 1


async def reorder_links(
    db: AsyncSession,
    left_kind: str,
    left_id: uuid.UUID,
    right_kind: str,
    items: Iterable[tuple[uuid.UUID, object]],
) -> int:
    """Update ``sort_order`` for existing links. Unknown right ids are skipped.

    Returns the number of links updated.
    """
    updated = 0
    for right_id, sort_order in items:
        link = await find_link(db, left_kind, left_id, right_kind, right_id)
        if link is None:
            continue
        link.sort_order = _coerce_sort_order(sort_order)
        updated += 1
    if updated:
        await db.flush()
    return updated
