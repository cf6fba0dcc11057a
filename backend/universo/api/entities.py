# @TASK P5-T5.3 - Mid-level and leaf endpoints

"""Mid-level and leaf endpoints of one hierarchy.

Reads need membership in a container reachable from the entity; writes
additionally need the matching content permission of that membership.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from universo.api.schemas import EntityCreate, EntityResponse, EntityUpdate, LinkResponse, MessageResponse
from universo.constants import EntityLevel
from universo.database import get_db
from universo.hierarchies import Hierarchy
from universo.services import hierarchy_service
from universo.services.activity_log import get_trigger_name, log_activity
from universo.services.auth_service import get_current_user

logger = logging.getLogger(__name__)


class MidLevelCreate(EntityCreate):
    container_id: uuid.UUID


class LeafCreate(EntityCreate):
    mid_level_id: uuid.UUID
    container_id: uuid.UUID | None = None


class LeafMidLevelRequest(BaseModel):
    mid_level_id: uuid.UUID
    replace: bool = True


def _entity_routes(router: APIRouter, hierarchy: Hierarchy, level: EntityLevel, path: str) -> None:
    """Register GET/PUT/DELETE ``{path}/{entity_id}`` for one level."""
    kind = hierarchy.kind_for(level)

    @router.get(f"{path}/{{entity_id}}", response_model=EntityResponse, name=f"get_{kind}")
    async def get_entity(
        entity_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> EntityResponse:
        node = await hierarchy_service.get_entity(db, hierarchy, current_user["user_id"], level, entity_id)
        return EntityResponse.model_validate(node)

    @router.put(f"{path}/{{entity_id}}", response_model=EntityResponse, name=f"update_{kind}")
    async def update_entity(
        entity_id: uuid.UUID,
        body: EntityUpdate,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> EntityResponse:
        node = await hierarchy_service.update_entity(
            db, hierarchy, current_user["user_id"], level, entity_id, body.name, body.description
        )
        return EntityResponse.model_validate(node)

    @router.delete(f"{path}/{{entity_id}}", response_model=MessageResponse, name=f"delete_{kind}")
    async def delete_entity(
        entity_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MessageResponse:
        await hierarchy_service.delete_entity(db, hierarchy, current_user["user_id"], level, entity_id)
        await log_activity(
            db, kind, "completed",
            message=f"{kind} deleted",
            details={"id": str(entity_id)},
            triggered_by=get_trigger_name(current_user),
        )
        return MessageResponse(message=f"{kind.capitalize()} deleted")


def build_router(hierarchy: Hierarchy) -> APIRouter:
    router = APIRouter()

    # --- Mid-levels ---

    @router.get("/mid-levels", response_model=list[EntityResponse])
    async def list_mid_levels(
        show_all: bool = False,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> list[EntityResponse]:
        """Mid-levels linked to any container the caller belongs to."""
        nodes = await hierarchy_service.list_mid_levels(db, hierarchy, current_user["user_id"], show_all)
        return [EntityResponse.model_validate(node) for node in nodes]

    @router.post("/mid-levels", response_model=EntityResponse, status_code=status.HTTP_201_CREATED)
    async def create_mid_level(
        body: MidLevelCreate,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> EntityResponse:
        node = await hierarchy_service.create_mid_level(
            db, hierarchy, current_user["user_id"], body.container_id, body.name, body.description
        )
        await log_activity(
            db, hierarchy.mid_level, "completed",
            message=f"{hierarchy.mid_level} created: {node.name}",
            details={"id": str(node.id), "container_id": str(body.container_id)},
            triggered_by=get_trigger_name(current_user),
        )
        return EntityResponse.model_validate(node)

    _entity_routes(router, hierarchy, EntityLevel.MID_LEVEL, "/mid-levels")

    # --- Leaves ---

    @router.get("/leaves", response_model=list[EntityResponse])
    async def list_leaves(
        show_all: bool = False,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> list[EntityResponse]:
        """Leaves reachable through the caller's containers, each listed once."""
        leaves = await hierarchy_service.list_leaves(db, hierarchy, current_user["user_id"], show_all)
        return [
            EntityResponse(
                id=leaf.id,
                name=leaf.name,
                description=leaf.description,
                created_at=leaf.created_at,
                updated_at=leaf.updated_at,
            )
            for leaf in leaves
        ]

    @router.post("/leaves", response_model=EntityResponse, status_code=status.HTTP_201_CREATED)
    async def create_leaf(
        body: LeafCreate,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> EntityResponse:
        node = await hierarchy_service.create_leaf(
            db, hierarchy, current_user["user_id"], body.mid_level_id, body.name, body.description,
            container_id=body.container_id,
        )
        await log_activity(
            db, hierarchy.leaf, "completed",
            message=f"{hierarchy.leaf} created: {node.name}",
            details={"id": str(node.id), "mid_level_id": str(body.mid_level_id)},
            triggered_by=get_trigger_name(current_user),
        )
        return EntityResponse.model_validate(node)

    _entity_routes(router, hierarchy, EntityLevel.LEAF, "/leaves")

    @router.put("/leaves/{leaf_id}/mid-level", response_model=LinkResponse)
    async def set_leaf_mid_level(
        leaf_id: uuid.UUID,
        body: LeafMidLevelRequest,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> LinkResponse:
        link, created = await hierarchy_service.link_leaf_to_mid_level(
            db, hierarchy, current_user["user_id"], leaf_id, body.mid_level_id, replace=body.replace
        )
        return LinkResponse(left_id=link.left_id, right_id=link.right_id, sort_order=link.sort_order, created=created)

    @router.delete("/leaves/{leaf_id}/mid-level", response_model=MessageResponse)
    async def detach_leaf_from_mid_levels(
        leaf_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MessageResponse:
        removed = await hierarchy_service.detach_leaf_from_mid_levels(db, hierarchy, current_user["user_id"], leaf_id)
        return MessageResponse(message=f"Removed {removed} link(s)")

    return router
