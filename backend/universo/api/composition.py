# @TASK P5-T5.4 - Leaf composition tree endpoints

"""Composition endpoints. Only hierarchies with composition enabled answer
these routes; others return 404.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from universo.api.schemas import MessageResponse
from universo.database import get_db
from universo.hierarchies import Hierarchy
from universo.services import hierarchy_service
from universo.services.auth_service import get_current_user
from universo.services.composition_service import EdgeAttrs, TreeNode, count_tree_nodes


class TreeNodeResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    quantity: int | None = None
    sort_order: int | None = None
    is_required: bool | None = None
    config: dict | None = None
    children: list[TreeNodeResponse] = Field(default_factory=list)


class TreeResponse(BaseModel):
    node_count: int
    root: TreeNodeResponse


class AddChildRequest(BaseModel):
    quantity: int = Field(default=1, gt=0)
    sort_order: int = 1
    is_required: bool = True
    config: dict = Field(default_factory=dict)


class EdgeResponse(BaseModel):
    id: uuid.UUID
    parent_id: uuid.UUID
    child_id: uuid.UUID
    quantity: int
    sort_order: int
    is_required: bool
    config: dict
    created_at: datetime


def _serialize(tree: TreeNode) -> TreeNodeResponse:
    """Nested response for a tree.

    A child that is already an ancestor on the current path is left out,
    so edges committed concurrently into a cycle still serialize.
    """

    def node_response(node: TreeNode, edge=None, path: frozenset = frozenset()) -> TreeNodeResponse:
        path = path | {node.entity.id}
        return TreeNodeResponse(
            id=node.entity.id,
            name=node.entity.name,
            description=node.entity.description,
            quantity=edge.quantity if edge is not None else None,
            sort_order=edge.sort_order if edge is not None else None,
            is_required=edge.is_required if edge is not None else None,
            config=edge.config if edge is not None else None,
            children=[
                node_response(child.node, child.edge, path)
                for child in node.children
                if child.node.entity.id not in path
            ],
        )

    return node_response(tree)


def build_router(hierarchy: Hierarchy) -> APIRouter:
    router = APIRouter(prefix="/leaves/{leaf_id}")

    @router.get("/tree", response_model=TreeResponse)
    async def get_tree(
        leaf_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> TreeResponse:
        tree = await hierarchy_service.get_composition_tree(db, hierarchy, current_user["user_id"], leaf_id)
        return TreeResponse(node_count=count_tree_nodes(tree), root=_serialize(tree))

    @router.post("/children/{child_id}", response_model=EdgeResponse, status_code=status.HTTP_201_CREATED)
    async def add_child(
        leaf_id: uuid.UUID,
        child_id: uuid.UUID,
        body: AddChildRequest | None = None,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> EdgeResponse:
        attrs = EdgeAttrs(**body.model_dump()) if body is not None else None
        edge = await hierarchy_service.add_composition_child(
            db, hierarchy, current_user["user_id"], leaf_id, child_id, attrs
        )
        return EdgeResponse(
            id=edge.id,
            parent_id=edge.parent_id,
            child_id=edge.child_id,
            quantity=edge.quantity,
            sort_order=edge.sort_order,
            is_required=edge.is_required,
            config=edge.config or {},
            created_at=edge.created_at,
        )

    @router.delete("/children/{child_id}", response_model=MessageResponse)
    async def remove_child(
        leaf_id: uuid.UUID,
        child_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MessageResponse:
        await hierarchy_service.remove_composition_child(db, hierarchy, current_user["user_id"], leaf_id, child_id)
        return MessageResponse(message="Child removed")

    return router
