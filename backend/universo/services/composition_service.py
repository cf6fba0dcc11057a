# @TASK P2-T2.4 - Resource composition tree

"""Parent/child composition graph of leaf entities.

The tree under a root is fetched with one recursive CTE that walks
``composition_edges`` outward from the root and joins each child's node
row, then assembled in memory through an id -> node map. Depth does not
change the number of queries.

Edges form a DAG. :func:`add_child` refuses an edge whose parent is
reachable from its child, since that edge would close a cycle.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from universo.exceptions import ConflictError, CycleDetectedError, InvalidReferenceError, NotFoundError
from universo.models import CompositionEdge, Node

logger = logging.getLogger(__name__)


@dataclass
class TreeEdge:
    edge: CompositionEdge
    node: TreeNode


@dataclass
class TreeNode:
    entity: Node
    children: list[TreeEdge] = field(default_factory=list)


@dataclass(frozen=True)
class EdgeAttrs:
    quantity: int = 1
    sort_order: int = 1
    is_required: bool = True
    config: dict = field(default_factory=dict)


def _descendant_edges_cte(root_id: uuid.UUID):
    """Recursive CTE of every edge reachable from ``root_id``.

    ``UNION`` rather than ``UNION ALL`` so a child shared by two parents is
    walked once.
    """
    edges = select(CompositionEdge.id).where(CompositionEdge.parent_id == root_id).cte(
        name="descendant_edges", recursive=True
    )
    parent_edge = CompositionEdge.__table__.alias("parent_edge")
    child_edge = CompositionEdge.__table__.alias("child_edge")
    step = (
        select(child_edge.c.id)
        .select_from(edges)
        .join(parent_edge, parent_edge.c.id == edges.c.id)
        .join(child_edge, child_edge.c.parent_id == parent_edge.c.child_id)
    )
    return edges.union(step)


async def get_node(db: AsyncSession, node_id: uuid.UUID) -> Node | None:
    result = await db.execute(select(Node).where(Node.id == node_id))
    return result.scalar_one_or_none()


async def get_tree(db: AsyncSession, root_id: uuid.UUID) -> TreeNode:
    """Return the composition tree rooted at ``root_id``.

    A node reachable along several paths is the same ``TreeNode`` object in
    each place it appears.

    Raises:
        NotFoundError: the root does not exist.
    """
    root = await get_node(db, root_id)
    if root is None:
        raise NotFoundError("Resource not found")

    reachable = _descendant_edges_cte(root_id)
    result = await db.execute(
        select(CompositionEdge, Node)
        .join(reachable, reachable.c.id == CompositionEdge.id)
        .join(Node, Node.id == CompositionEdge.child_id)
        .order_by(CompositionEdge.sort_order, CompositionEdge.created_at, CompositionEdge.id)
    )
    rows = result.all()

    nodes: dict[uuid.UUID, TreeNode] = {root.id: TreeNode(entity=root)}
    for _, child in rows:
        nodes.setdefault(child.id, TreeNode(entity=child))
    for edge, _ in rows:
        nodes[edge.parent_id].children.append(TreeEdge(edge=edge, node=nodes[edge.child_id]))
    return nodes[root.id]


def count_tree_nodes(tree: TreeNode) -> int:
    """Number of distinct entities in a tree."""
    seen: set[uuid.UUID] = set()
    stack = [tree]
    while stack:
        node = stack.pop()
        if node.entity.id in seen:
            continue
        seen.add(node.entity.id)
        stack.extend(child.node for child in node.children)
    return len(seen)


async def is_reachable(db: AsyncSession, source_id: uuid.UUID, target_id: uuid.UUID) -> bool:
    """True if ``target_id`` is a descendant of ``source_id``."""
    reachable = _descendant_edges_cte(source_id)
    result = await db.execute(
        select(CompositionEdge.id)
        .join(reachable, reachable.c.id == CompositionEdge.id)
        .where(CompositionEdge.child_id == target_id)
        .limit(1)
    )
    return result.first() is not None


async def add_child(
    db: AsyncSession,
    parent_id: uuid.UUID,
    child_id: uuid.UUID,
    attrs: EdgeAttrs | None = None,
) -> CompositionEdge:
    """Insert the edge ``parent_id -> child_id``.

    Raises:
        InvalidReferenceError: parent or child does not exist.
        CycleDetectedError: the edge would close a cycle (nothing is written).
        ConflictError: the edge already exists.
    """
    if attrs is None:
        attrs = EdgeAttrs()

    if parent_id == child_id:
        raise CycleDetectedError(parent_id, child_id)

    for node_id in (parent_id, child_id):
        if await get_node(db, node_id) is None:
            raise InvalidReferenceError(f"Resource {node_id} does not exist")

    if await is_reachable(db, child_id, parent_id):
        logger.info("Rejected composition edge %s -> %s: cycle", parent_id, child_id)
        raise CycleDetectedError(parent_id, child_id)

    edge = CompositionEdge(
        parent_id=parent_id,
        child_id=child_id,
        quantity=attrs.quantity,
        sort_order=attrs.sort_order,
        is_required=attrs.is_required,
        config=dict(attrs.config),
    )
    try:
        async with db.begin_nested():
            db.add(edge)
    except IntegrityError as exc:
        raise ConflictError("This child is already attached to the parent") from exc
    return edge


async def remove_child(db: AsyncSession, parent_id: uuid.UUID, child_id: uuid.UUID) -> bool:
    """Delete the edge ``parent_id -> child_id``. Returns False if not found."""
    result = await db.execute(
        select(CompositionEdge).where(
            CompositionEdge.parent_id == parent_id,
            CompositionEdge.child_id == child_id,
        )
    )
    edge = result.scalar_one_or_none()
    if edge is None:
        return False
    await db.delete(edge)
    await db.flush()
    return True
