"""Container, mid-level and leaf operations shared by every module.

Each function takes the :class:`~universo.hierarchies.Hierarchy` it works
on, so metaverses, resources, organizations and campaigns share one
implementation. Every privileged operation resolves access first and then
validates and writes.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from universo.config import get_settings
from universo.constants import CONTAINER_SORT_FIELDS, EntityLevel, MemberRole, Permission, SortOrder
from universo.exceptions import InvalidReferenceError, NotFoundError
from universo.hierarchies import Hierarchy
from universo.models import CompositionEdge, ContainerMembership, Link, Node, Publication
from universo.services import composition_service, global_access, link_store
from universo.services.access_resolver import (
    LeafSummary,
    ensure_access,
    list_reachable_leaves,
    list_reachable_mid_levels,
)
from universo.services.membership_service import add_owner_membership
from universo.services.role_policy import normalize_role, permission_map
from universo.utils.pagination import (
    LIKE_ESCAPE_CHAR,
    clamp_offset,
    contains_pattern,
    parse_int_safe,
    parse_sort_order,
)

logger = logging.getLogger(__name__)


ACCESS_TYPE_MEMBER = "member"


@dataclass(frozen=True)
class ContainerSummary:
    id: uuid.UUID
    name: str
    description: str | None
    role: MemberRole
    mid_level_count: int
    leaf_count: int
    created_at: datetime
    updated_at: datetime
    access_type: str = ACCESS_TYPE_MEMBER

    @property
    def permissions(self) -> dict[str, bool]:
        return permission_map(self.role)


@dataclass(frozen=True)
class ContainerPage:
    items: list[ContainerSummary]
    total: int
    limit: int
    offset: int


@dataclass(frozen=True)
class ContainerDetails:
    """A container as seen by one caller, with its counts and the caller's rights."""

    node: Node
    role: MemberRole
    mid_level_count: int
    leaf_count: int
    members_count: int
    access_type: str = ACCESS_TYPE_MEMBER

    @property
    def permissions(self) -> dict[str, bool]:
        return permission_map(self.role)


@dataclass(frozen=True)
class ChildEntry:
    node: Node
    sort_order: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_node_of_kind(db: AsyncSession, kind: str, node_id: uuid.UUID) -> Node | None:
    result = await db.execute(select(Node).where(Node.id == node_id, Node.kind == kind))
    return result.scalar_one_or_none()


async def _require_node(db: AsyncSession, kind: str, node_id: uuid.UUID) -> Node:
    node = await get_node_of_kind(db, kind, node_id)
    if node is None:
        raise NotFoundError(f"{kind.capitalize()} not found")
    return node


async def require_container(db: AsyncSession, hierarchy: Hierarchy, container_id: uuid.UUID) -> Node:
    """Load a container of this hierarchy or raise :class:`NotFoundError`."""
    return await _require_node(db, hierarchy.container, container_id)


async def _require_reference(db: AsyncSession, kind: str, node_id: uuid.UUID) -> Node:
    node = await get_node_of_kind(db, kind, node_id)
    if node is None:
        raise InvalidReferenceError(f"Invalid {kind} id: {node_id}")
    return node


async def _remove_node(db: AsyncSession, node: Node) -> None:
    await link_store.delete_links_for(db, node.kind, node.id)
    await db.execute(
        delete(CompositionEdge).where(
            or_(CompositionEdge.parent_id == node.id, CompositionEdge.child_id == node.id)
        )
    )
    await db.delete(node)
    await db.flush()


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------


async def create_container(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    name: str,
    description: str | None = None,
) -> Node:
    """Create a container and make ``user_id`` its owner in the same transaction."""
    container = Node(kind=hierarchy.container, name=name, description=description)
    db.add(container)
    await db.flush()
    await add_owner_membership(db, container.id, user_id)
    logger.info("%s created: id=%s owner=%s", hierarchy.container, container.id, user_id)
    return container


def _link_count(hierarchy: Hierarchy, right_kind: str):
    return (
        select(func.count(Link.id))
        .where(Link.left_kind == hierarchy.container, Link.left_id == Node.id, Link.right_kind == right_kind)
        .correlate(Node)
        .scalar_subquery()
    )


def _members_count():
    return (
        select(func.count(ContainerMembership.id))
        .where(ContainerMembership.container_id == Node.id)
        .correlate(Node)
        .scalar_subquery()
    )


async def list_containers(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    limit: object = None,
    offset: object = None,
    sort_by: object = None,
    sort_order: object = None,
    search: str | None = None,
    show_all: bool = False,
) -> ContainerPage:
    """Containers the user belongs to, with mid-level and leaf counts.

    ``search`` matches name or description, case-insensitively. ``show_all``
    lists every container of the hierarchy, but only for holders of a
    global-access role; containers they are not a member of are reported
    with the owner role and the global role as ``access_type``.
    """
    settings = get_settings()
    page_size = parse_int_safe(limit, settings.CONTAINER_LIST_DEFAULT_LIMIT, 1, settings.CONTAINER_LIST_MAX_LIMIT)
    page_offset = clamp_offset(offset)

    sort_columns = {"name": Node.name, "created": Node.created_at, "updated": Node.updated_at}
    if isinstance(sort_by, str) and sort_by in CONTAINER_SORT_FIELDS:
        column, order = sort_columns[sort_by], parse_sort_order(sort_order)
    else:
        column, order = Node.updated_at, SortOrder.DESC

    global_role = await global_access.get_global_role_name(db, user_id) if show_all else None

    conditions = [Node.kind == hierarchy.container]
    if search and search.strip():
        pattern = contains_pattern(search.strip())
        conditions.append(
            or_(
                Node.name.ilike(pattern, escape=LIKE_ESCAPE_CHAR),
                Node.description.ilike(pattern, escape=LIKE_ESCAPE_CHAR),
            )
        )

    membership_match = and_(ContainerMembership.container_id == Node.id, ContainerMembership.user_id == user_id)
    stmt = select(
        Node,
        ContainerMembership.user_id.label("member_id"),
        ContainerMembership.role,
        _link_count(hierarchy, hierarchy.mid_level).label("mid_level_count"),
        _link_count(hierarchy, hierarchy.leaf).label("leaf_count"),
        func.count().over().label("total_count"),
    )
    if global_role is not None:
        stmt = stmt.outerjoin(ContainerMembership, membership_match)
    else:
        stmt = stmt.join(ContainerMembership, membership_match)
    stmt = (
        stmt.where(*conditions)
        .order_by(column.asc() if order == SortOrder.ASC else column.desc(), Node.id)
        .limit(page_size)
        .offset(page_offset)
    )
    rows = (await db.execute(stmt)).all()

    if rows:
        total = rows[0].total_count
    elif page_offset:
        count_stmt = select(func.count()).select_from(Node)
        if global_role is None:
            count_stmt = count_stmt.join(ContainerMembership, membership_match)
        total = (await db.execute(count_stmt.where(*conditions))).scalar_one()
    else:
        total = 0

    items = [
        ContainerSummary(
            id=row.Node.id,
            name=row.Node.name,
            description=row.Node.description,
            role=normalize_role(row.role) if row.member_id is not None else MemberRole.OWNER,
            mid_level_count=row.mid_level_count or 0,
            leaf_count=row.leaf_count or 0,
            created_at=row.Node.created_at,
            updated_at=row.Node.updated_at,
            access_type=ACCESS_TYPE_MEMBER if row.member_id is not None else global_role,
        )
        for row in rows
    ]
    return ContainerPage(items=items, total=total, limit=page_size, offset=page_offset)


async def get_container(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
) -> ContainerDetails:
    verdict = await ensure_access(db, hierarchy, user_id, container_id, EntityLevel.CONTAINER)
    stmt = select(
        Node,
        _link_count(hierarchy, hierarchy.mid_level).label("mid_level_count"),
        _link_count(hierarchy, hierarchy.leaf).label("leaf_count"),
        _members_count().label("members_count"),
    ).where(Node.id == container_id, Node.kind == hierarchy.container)
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        raise NotFoundError(f"{hierarchy.container.capitalize()} not found")
    return ContainerDetails(
        node=row.Node,
        role=normalize_role(verdict.role),
        mid_level_count=row.mid_level_count or 0,
        leaf_count=row.leaf_count or 0,
        members_count=row.members_count or 0,
        access_type=verdict.global_role or ACCESS_TYPE_MEMBER,
    )


async def update_container(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
    name: str,
    description: str | None = None,
) -> tuple[Node, MemberRole]:
    verdict = await ensure_access(
        db, hierarchy, user_id, container_id, EntityLevel.CONTAINER, Permission.MANAGE_CONTAINER
    )
    container = await _require_node(db, hierarchy.container, container_id)
    container.name = name
    container.description = description
    await db.flush()
    return container, normalize_role(verdict.role)


async def delete_container(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
) -> None:
    """Delete a container with its memberships, links and publications."""
    await ensure_access(db, hierarchy, user_id, container_id, EntityLevel.CONTAINER, Permission.MANAGE_CONTAINER)
    container = await _require_node(db, hierarchy.container, container_id)

    await db.execute(delete(ContainerMembership).where(ContainerMembership.container_id == container_id))
    await db.execute(delete(Publication).where(Publication.container_id == container_id))
    await _remove_node(db, container)
    logger.info("%s deleted: id=%s by=%s", hierarchy.container, container_id, user_id)


async def list_container_children(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
    level: EntityLevel,
) -> list[ChildEntry]:
    """Mid-levels or leaves linked directly to a container, in display order."""
    await ensure_access(db, hierarchy, user_id, container_id, EntityLevel.CONTAINER)
    child_kind = hierarchy.kind_for(level)
    links = await link_store.find_links_by_left_id(db, hierarchy.container, [container_id], child_kind)
    if not links:
        return []

    result = await db.execute(select(Node).where(Node.id.in_([link.right_id for link in links])))
    nodes = {node.id: node for node in result.scalars().all()}
    return [ChildEntry(node=nodes[link.right_id], sort_order=link.sort_order) for link in links if link.right_id in nodes]


# ---------------------------------------------------------------------------
# Mid-levels and leaves
# ---------------------------------------------------------------------------


async def _all_of_kind(db: AsyncSession, kind: str) -> list[Node]:
    result = await db.execute(select(Node).where(Node.kind == kind).order_by(Node.name, Node.id))
    return list(result.scalars().all())


async def list_mid_levels(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    show_all: bool = False,
) -> list[Node]:
    """Reachable mid-levels, or every mid-level for a global-access ``show_all``."""
    if show_all and await global_access.has_global_access(db, user_id):
        return await _all_of_kind(db, hierarchy.mid_level)
    return await list_reachable_mid_levels(db, hierarchy, user_id)


async def list_leaves(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    show_all: bool = False,
) -> list[LeafSummary]:
    if show_all and await global_access.has_global_access(db, user_id):
        return [
            LeafSummary(
                id=leaf.id,
                name=leaf.name,
                description=leaf.description,
                created_at=leaf.created_at,
                updated_at=leaf.updated_at,
            )
            for leaf in await _all_of_kind(db, hierarchy.leaf)
        ]
    return await list_reachable_leaves(db, hierarchy, user_id)


async def create_mid_level(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
    name: str,
    description: str | None = None,
) -> Node:
    """Create a mid-level together with its mandatory container link."""
    await _require_reference(db, hierarchy.container, container_id)
    await ensure_access(db, hierarchy, user_id, container_id, EntityLevel.CONTAINER, Permission.CREATE_CONTENT)

    mid_level = Node(kind=hierarchy.mid_level, name=name, description=description)
    db.add(mid_level)
    await db.flush()
    await link_store.create_link(db, hierarchy.container, container_id, hierarchy.mid_level, mid_level.id)
    return mid_level


async def create_leaf(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    mid_level_id: uuid.UUID,
    name: str,
    description: str | None = None,
    container_id: uuid.UUID | None = None,
) -> Node:
    """Create a leaf linked to a mid-level and, optionally, directly to a container.

    All references and permissions are checked before anything is written.
    """
    await _require_reference(db, hierarchy.mid_level, mid_level_id)
    await ensure_access(db, hierarchy, user_id, mid_level_id, EntityLevel.MID_LEVEL, Permission.CREATE_CONTENT)
    if container_id is not None:
        await _require_reference(db, hierarchy.container, container_id)
        await ensure_access(db, hierarchy, user_id, container_id, EntityLevel.CONTAINER, Permission.CREATE_CONTENT)

    leaf = Node(kind=hierarchy.leaf, name=name, description=description)
    db.add(leaf)
    await db.flush()
    await link_store.create_link(db, hierarchy.mid_level, mid_level_id, hierarchy.leaf, leaf.id)
    if container_id is not None:
        await link_store.create_link(db, hierarchy.container, container_id, hierarchy.leaf, leaf.id)
    return leaf


async def get_entity(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    level: EntityLevel,
    node_id: uuid.UUID,
) -> Node:
    await ensure_access(db, hierarchy, user_id, node_id, level)
    return await _require_node(db, hierarchy.kind_for(level), node_id)


async def update_entity(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    level: EntityLevel,
    node_id: uuid.UUID,
    name: str | None = None,
    description: str | None = None,
) -> Node:
    await ensure_access(db, hierarchy, user_id, node_id, level, Permission.EDIT_CONTENT)
    node = await _require_node(db, hierarchy.kind_for(level), node_id)
    if name is not None:
        node.name = name
    if description is not None:
        node.description = description
    await db.flush()
    return node


async def delete_entity(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    level: EntityLevel,
    node_id: uuid.UUID,
) -> None:
    await ensure_access(db, hierarchy, user_id, node_id, level, Permission.DELETE_CONTENT)
    node = await _require_node(db, hierarchy.kind_for(level), node_id)
    await _remove_node(db, node)


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


async def attach_to_container(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
    level: EntityLevel,
    node_id: uuid.UUID,
) -> tuple[Link, bool]:
    """Link an existing mid-level or leaf to a container. Idempotent.

    The caller needs ``editContent`` on the container and must already reach
    the mid-level or leaf being linked.
    """
    await ensure_access(db, hierarchy, user_id, container_id, EntityLevel.CONTAINER, Permission.EDIT_CONTENT)
    await ensure_access(db, hierarchy, user_id, node_id, level)
    await _require_node(db, hierarchy.container, container_id)
    child_kind = hierarchy.kind_for(level)
    await _require_node(db, child_kind, node_id)
    return await link_store.create_link(db, hierarchy.container, container_id, child_kind, node_id)


async def detach_leaf_from_container(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
    leaf_id: uuid.UUID,
) -> None:
    await ensure_access(db, hierarchy, user_id, container_id, EntityLevel.CONTAINER, Permission.EDIT_CONTENT)
    removed = await link_store.delete_link(db, hierarchy.container, container_id, hierarchy.leaf, leaf_id)
    if not removed:
        raise NotFoundError("Link not found")


async def reorder_container_leaves(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    container_id: uuid.UUID,
    items: Iterable[tuple[uuid.UUID, object]],
) -> int:
    await ensure_access(db, hierarchy, user_id, container_id, EntityLevel.CONTAINER, Permission.EDIT_CONTENT)
    return await link_store.reorder_links(db, hierarchy.container, container_id, hierarchy.leaf, items)


async def link_leaf_to_mid_level(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    leaf_id: uuid.UUID,
    mid_level_id: uuid.UUID,
    replace: bool = False,
) -> tuple[Link, bool]:
    """Link a leaf to a mid-level.

    With ``replace`` the leaf's other mid-level links are removed, which
    moves it. Access to the leaf is checked while its current links still
    exist.
    """
    await ensure_access(db, hierarchy, user_id, leaf_id, EntityLevel.LEAF, Permission.EDIT_CONTENT)
    await ensure_access(db, hierarchy, user_id, mid_level_id, EntityLevel.MID_LEVEL, Permission.EDIT_CONTENT)
    await _require_node(db, hierarchy.leaf, leaf_id)
    await _require_node(db, hierarchy.mid_level, mid_level_id)
    if replace:
        for existing in await link_store.find_links_by_right_id(db, hierarchy.leaf, [leaf_id], hierarchy.mid_level):
            if existing.left_id != mid_level_id:
                await db.delete(existing)
        await db.flush()
    return await link_store.create_link(db, hierarchy.mid_level, mid_level_id, hierarchy.leaf, leaf_id)


async def detach_leaf_from_mid_levels(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    leaf_id: uuid.UUID,
) -> int:
    """Remove every mid-level link of a leaf."""
    await ensure_access(db, hierarchy, user_id, leaf_id, EntityLevel.LEAF, Permission.EDIT_CONTENT)
    await _require_node(db, hierarchy.leaf, leaf_id)
    removed = await link_store.delete_links_by_right_id(db, hierarchy.leaf, leaf_id, hierarchy.mid_level)
    if not removed:
        raise NotFoundError(f"No {hierarchy.mid_level} links found")
    return removed


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def _require_composition(hierarchy: Hierarchy) -> None:
    if not hierarchy.has_composition:
        raise NotFoundError(f"{hierarchy.slug} does not support composition")


async def get_composition_tree(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    root_id: uuid.UUID,
) -> composition_service.TreeNode:
    _require_composition(hierarchy)
    await ensure_access(db, hierarchy, user_id, root_id, EntityLevel.LEAF)
    return await composition_service.get_tree(db, root_id)


async def add_composition_child(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    parent_id: uuid.UUID,
    child_id: uuid.UUID,
    attrs: composition_service.EdgeAttrs | None = None,
) -> CompositionEdge:
    _require_composition(hierarchy)
    await ensure_access(db, hierarchy, user_id, parent_id, EntityLevel.LEAF, Permission.EDIT_CONTENT)
    await ensure_access(db, hierarchy, user_id, child_id, EntityLevel.LEAF)
    return await composition_service.add_child(db, parent_id, child_id, attrs)


async def remove_composition_child(
    db: AsyncSession,
    hierarchy: Hierarchy,
    user_id: uuid.UUID,
    parent_id: uuid.UUID,
    child_id: uuid.UUID,
) -> None:
    _require_composition(hierarchy)
    await ensure_access(db, hierarchy, user_id, parent_id, EntityLevel.LEAF, Permission.EDIT_CONTENT)
    if not await composition_service.remove_child(db, parent_id, child_id):
        raise NotFoundError("Composition edge not found")
