# @TASK P2-T2.1 - Hierarchical access resolution

"""Access resolution across container / mid-level / leaf hierarchies.

Resolution order:

1. **Container** -- the user's membership row decides; no row is *forbidden*.
2. **Mid-level** -- the mid-level's container link leads to step 1; a
   mid-level without a container link is *not found*.
3. **Leaf** -- mid-level links first: leaf -> mid-levels -> containers,
   deduplicated, and a membership in any of them grants access. A leaf whose
   mid-levels reach no container is *forbidden*. Only a leaf with no
   mid-level link at all falls back to its direct container links; no direct
   link either is *not found*.

Once membership is established the role is checked against the role policy
when a permission is required. A reachable target that would be *forbidden*
is granted with owner rights to holders of a global-access role; *not found*
stays not found. Storage is queried on every call; nothing is
cached across requests.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from universo.constants import AccessReason, EntityLevel, MemberRole, Permission
from universo.exceptions import ForbiddenError, NotFoundError
from universo.hierarchies import Hierarchy
from universo.models import ContainerMembership, Node
from universo.services import global_access, link_store
from universo.services.role_policy import has_permission, normalize_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessVerdict:
    granted: bool
    reason: AccessReason
    role: MemberRole | None = None
    container_id: uuid.UUID | None = None
    global_role: str | None = None

    @classmethod
    def not_found(cls) -> AccessVerdict:
        return cls(granted=False, reason=AccessReason.NOT_FOUND)

    @classmethod
    def forbidden(
        cls,
        role: MemberRole | None = None,
        container_id: uuid.UUID | None = None,
    ) -> AccessVerdict:
        return cls(granted=False, reason=AccessReason.FORBIDDEN, role=role, container_id=container_id)


@dataclass(frozen=True)
class LeafSummary:
    id: uuid.UUID
    name: str
    description: str | None
    created_at: datetime
    updated_at: datetime


def _unique(ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
    """Deduplicate ids keeping first-seen order."""
    return list(dict.fromkeys(ids))


def _verdict_for_membership(
    membership: ContainerMembership,
    required_permission: Permission | None,
) -> AccessVerdict:
    role = normalize_role(membership.role)
    if required_permission is not None and not has_permission(role, required_permission):
        return AccessVerdict.forbidden(role=role, container_id=membership.container_id)
    return AccessVerdict(
        granted=True,
        reason=AccessReason.OK,
        role=role,
        container_id=membership.container_id,
    )


async def _resolve_containers(
    db: AsyncSession,
    user_id: uuid.UUID,
    container_ids: list[uuid.UUID],
    required_permission: Permission | None,
) -> AccessVerdict:
    membership = await link_store.find_first_membership(db, container_ids, user_id)
    if membership is None:
        return AccessVerdict.forbidden()
    return _verdict_for_membership(membership, required_permission)


async def apply_global_access(
    db: AsyncSession,
    user_id: uuid.UUID,
    verdict: AccessVerdict,
) -> AccessVerdict:
    """Upgrade a *forbidden* verdict for holders of a global-access role."""
    if verdict.granted or verdict.reason != AccessReason.FORBIDDEN:
        return verdict
    global_role = await global_access.get_global_role_name(db, user_id)
    if global_role is None:
        return verdict
    return AccessVerdict(
        granted=True,
        reason=AccessReason.OK,
        role=MemberRole.OWNER,
        container_id=verdict.container_id,
        global_role=global_role,
    )


async def resolve_container_access(
    db: AsyncSession,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
    required_permission: Permission | None = None,
) -> AccessVerdict:
    membership = await link_store.find_membership(db, container_id, user_id)
    if membership is None:
        return AccessVerdict.forbidden()
    return _verdict_for_membership(membership, required_permission)


async def resolve_mid_level_access(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    mid_level_id: uuid.UUID,
    required_permission: Permission | None = None,
) -> AccessVerdict:
    links = await link_store.find_links_by_right_id(
        db, hierarchy.mid_level, [mid_level_id], hierarchy.container
    )
    if not links:
        logger.warning("%s %s has no %s link", hierarchy.mid_level, mid_level_id, hierarchy.container)
        return AccessVerdict.not_found()
    return await resolve_container_access(db, user_id, links[0].left_id, required_permission)


async def resolve_leaf_access(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    leaf_id: uuid.UUID,
    required_permission: Permission | None = None,
) -> AccessVerdict:
    mid_links = await link_store.find_links_by_right_id(db, hierarchy.leaf, [leaf_id], hierarchy.mid_level)

    if mid_links:
        mid_level_ids = _unique(link.left_id for link in mid_links)
        container_links = await link_store.find_links_by_right_id(
            db, hierarchy.mid_level, mid_level_ids, hierarchy.container
        )
        container_ids = _unique(link.left_id for link in container_links)
        if not container_ids:
            # The leaf exists but its mid-levels are orphaned: an access failure, not a missing entity.
            return AccessVerdict.forbidden()
        return await _resolve_containers(db, user_id, container_ids, required_permission)

    direct_links = await link_store.find_links_by_right_id(db, hierarchy.leaf, [leaf_id], hierarchy.container)
    if not direct_links:
        return AccessVerdict.not_found()
    container_ids = _unique(link.left_id for link in direct_links)
    return await _resolve_containers(db, user_id, container_ids, required_permission)


async def resolve_access(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    target_id: uuid.UUID,
    level: EntityLevel,
    required_permission: Permission | None = None,
) -> AccessVerdict:
    """Decide whether ``user_id`` may reach ``target_id`` and, optionally,
    whether its role grants ``required_permission``.
    """
    if level == EntityLevel.CONTAINER:
        verdict = await resolve_container_access(db, user_id, target_id, required_permission)
    elif level == EntityLevel.MID_LEVEL:
        verdict = await resolve_mid_level_access(db, hierarchy, user_id, target_id, required_permission)
    else:
        verdict = await resolve_leaf_access(db, hierarchy, user_id, target_id, required_permission)
    return await apply_global_access(db, user_id, verdict)


async def ensure_access(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    target_id: uuid.UUID,
    level: EntityLevel,
    required_permission: Permission | None = None,
) -> AccessVerdict:
    """Like :func:`resolve_access` but raises on denial.

    Raises:
        NotFoundError: the entity or its mandatory link chain is absent.
        ForbiddenError: the caller is not a member or lacks the permission.
    """
    verdict = await resolve_access(db, hierarchy, user_id, target_id, level, required_permission)
    if verdict.granted:
        return verdict

    kind = hierarchy.kind_for(level)
    if verdict.reason == AccessReason.NOT_FOUND:
        raise NotFoundError(f"{kind.capitalize()} not found")

    logger.info(
        "Access denied: user=%s %s=%s permission=%s role=%s",
        user_id, kind, target_id, required_permission, verdict.role,
    )
    if verdict.role is not None:
        raise ForbiddenError(f"Your role does not allow {required_permission} on this {kind}")
    raise ForbiddenError(f"Access denied to this {kind}")


async def _user_container_ids(db: AsyncSession, hierarchy: Hierarchy, user_id: uuid.UUID) -> list[uuid.UUID]:
    memberships = await link_store.find_user_memberships(db, user_id, hierarchy.container)
    return _unique(m.container_id for m in memberships)


async def _load_nodes(db: AsyncSession, kind: str, ids: list[uuid.UUID]) -> list[Node]:
    if not ids:
        return []
    result = await db.execute(select(Node).where(Node.kind == kind, Node.id.in_(ids)).order_by(Node.name, Node.id))
    return list(result.scalars().all())


async def list_reachable_mid_levels(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
) -> list[Node]:
    container_ids = await _user_container_ids(db, hierarchy, user_id)
    mid_links = await link_store.find_links_by_left_id(db, hierarchy.container, container_ids, hierarchy.mid_level)
    return await _load_nodes(db, hierarchy.mid_level, _unique(link.right_id for link in mid_links))


async def list_reachable_leaves(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
) -> list[LeafSummary]:
    """Leaves reachable from the user's memberships, each listed once.

    Traversal runs downward: memberships -> containers -> mid-levels ->
    leaves. A leaf reached through several mid-levels appears once.
    """
    container_ids = await _user_container_ids(db, hierarchy, user_id)
    if not container_ids:
        return []

    mid_links = await link_store.find_links_by_left_id(db, hierarchy.container, container_ids, hierarchy.mid_level)
    mid_level_ids = _unique(link.right_id for link in mid_links)
    if not mid_level_ids:
        return []

    leaf_links = await link_store.find_links_by_left_id(db, hierarchy.mid_level, mid_level_ids, hierarchy.leaf)
    leaves = await _load_nodes(db, hierarchy.leaf, _unique(link.right_id for link in leaf_links))
    return [
        LeafSummary(
            id=leaf.id,
            name=leaf.name,
            description=leaf.description,
            created_at=leaf.created_at,
            updated_at=leaf.updated_at,
        )
        for leaf in leaves
    ]
