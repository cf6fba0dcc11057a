# @TASK P5-T5.1 - Container CRUD and container link endpoints

"""Container endpoints of one hierarchy.

- ``GET    /containers``                          -- containers the caller belongs to (search, show_all)
- ``POST   /containers``                          -- create; caller becomes owner
- ``GET    /containers/{id}``                     -- any member
- ``PUT    /containers/{id}``                     -- manageContainer
- ``DELETE /containers/{id}``                     -- manageContainer
- ``GET    /containers/{id}/mid-levels``          -- linked mid-levels
- ``POST   /containers/{id}/mid-levels/{mid_id}`` -- link an existing mid-level
- ``GET    /containers/{id}/leaves``              -- directly linked leaves
- ``POST   /containers/{id}/leaves/reorder``      -- update link sort order
- ``POST   /containers/{id}/leaves/{leaf_id}``    -- link an existing leaf
- ``DELETE /containers/{id}/leaves/{leaf_id}``    -- unlink a leaf
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from universo.api.schemas import ChildEntityResponse, EntityCreate, LinkResponse, MessageResponse
from universo.constants import EntityLevel, MemberRole
from universo.database import get_db
from universo.hierarchies import Hierarchy
from universo.services import hierarchy_service
from universo.services.activity_log import get_trigger_name, log_activity
from universo.services.auth_service import get_current_user
from universo.services.role_policy import permission_map

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class ContainerResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    role: str
    access_type: str = hierarchy_service.ACCESS_TYPE_MEMBER
    permissions: dict[str, bool] = Field(default_factory=dict)
    mid_level_count: int = 0
    leaf_count: int = 0
    members_count: int | None = None
    created_at: datetime
    updated_at: datetime


class ContainerListResponse(BaseModel):
    items: list[ContainerResponse]
    total: int
    limit: int
    offset: int


class ReorderItem(BaseModel):
    id: uuid.UUID
    sort_order: int | str | None = None


class ReorderRequest(BaseModel):
    items: list[ReorderItem] = Field(default_factory=list)


class ReorderResponse(BaseModel):
    updated: int


def _child_response(entry: hierarchy_service.ChildEntry) -> ChildEntityResponse:
    node = entry.node
    return ChildEntityResponse(
        id=node.id,
        name=node.name,
        description=node.description,
        created_at=node.created_at,
        updated_at=node.updated_at,
        sort_order=entry.sort_order,
    )


def build_router(hierarchy: Hierarchy) -> APIRouter:
    router = APIRouter(prefix="/containers")

    @router.get("", response_model=ContainerListResponse)
    async def list_containers(
        limit: str | None = None,
        offset: str | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
        search: str | None = None,
        show_all: bool = False,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> ContainerListResponse:
        """Containers of the caller; ``show_all`` lists every one for global admins."""
        page = await hierarchy_service.list_containers(
            db, hierarchy, current_user["user_id"], limit, offset, sort_by, sort_order, search, show_all
        )
        return ContainerListResponse(
            items=[
                ContainerResponse(
                    id=s.id,
                    name=s.name,
                    description=s.description,
                    role=s.role,
                    access_type=s.access_type,
                    permissions=s.permissions,
                    mid_level_count=s.mid_level_count,
                    leaf_count=s.leaf_count,
                    created_at=s.created_at,
                    updated_at=s.updated_at,
                )
                for s in page.items
            ],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
        )

    @router.post("", response_model=ContainerResponse, status_code=status.HTTP_201_CREATED)
    async def create_container(
        body: EntityCreate,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> ContainerResponse:
        container = await hierarchy_service.create_container(
            db, hierarchy, current_user["user_id"], body.name, body.description
        )
        await log_activity(
            db, hierarchy.container, "completed",
            message=f"{hierarchy.container} created: {container.name}",
            details={"id": str(container.id)},
            triggered_by=get_trigger_name(current_user),
        )
        return ContainerResponse(
            id=container.id,
            name=container.name,
            description=container.description,
            role=MemberRole.OWNER,
            permissions=permission_map(MemberRole.OWNER),
            members_count=1,
            created_at=container.created_at,
            updated_at=container.updated_at,
        )

    @router.get("/{container_id}", response_model=ContainerResponse)
    async def get_container(
        container_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> ContainerResponse:
        details = await hierarchy_service.get_container(db, hierarchy, current_user["user_id"], container_id)
        container = details.node
        return ContainerResponse(
            id=container.id,
            name=container.name,
            description=container.description,
            role=details.role,
            access_type=details.access_type,
            permissions=details.permissions,
            mid_level_count=details.mid_level_count,
            leaf_count=details.leaf_count,
            members_count=details.members_count,
            created_at=container.created_at,
            updated_at=container.updated_at,
        )

    @router.put("/{container_id}", response_model=ContainerResponse)
    async def update_container(
        container_id: uuid.UUID,
        body: EntityCreate,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> ContainerResponse:
        container, role = await hierarchy_service.update_container(
            db, hierarchy, current_user["user_id"], container_id, body.name, body.description
        )
        return ContainerResponse(
            id=container.id,
            name=container.name,
            description=container.description,
            role=role,
            permissions=permission_map(role),
            created_at=container.created_at,
            updated_at=container.updated_at,
        )

    @router.delete("/{container_id}", response_model=MessageResponse)
    async def delete_container(
        container_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MessageResponse:
        await hierarchy_service.delete_container(db, hierarchy, current_user["user_id"], container_id)
        await log_activity(
            db, hierarchy.container, "completed",
            message=f"{hierarchy.container} deleted",
            details={"id": str(container_id)},
            triggered_by=get_trigger_name(current_user),
        )
        return MessageResponse(message=f"{hierarchy.container.capitalize()} deleted")

    @router.get("/{container_id}/mid-levels", response_model=list[ChildEntityResponse])
    async def list_container_mid_levels(
        container_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> list[ChildEntityResponse]:
        entries = await hierarchy_service.list_container_children(
            db, hierarchy, current_user["user_id"], container_id, EntityLevel.MID_LEVEL
        )
        return [_child_response(entry) for entry in entries]

    @router.post("/{container_id}/mid-levels/{mid_level_id}", response_model=LinkResponse)
    async def attach_mid_level(
        container_id: uuid.UUID,
        mid_level_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> LinkResponse:
        link, created = await hierarchy_service.attach_to_container(
            db, hierarchy, current_user["user_id"], container_id, EntityLevel.MID_LEVEL, mid_level_id
        )
        return LinkResponse(left_id=link.left_id, right_id=link.right_id, sort_order=link.sort_order, created=created)

    @router.get("/{container_id}/leaves", response_model=list[ChildEntityResponse])
    async def list_container_leaves(
        container_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> list[ChildEntityResponse]:
        entries = await hierarchy_service.list_container_children(
            db, hierarchy, current_user["user_id"], container_id, EntityLevel.LEAF
        )
        return [_child_response(entry) for entry in entries]

    # Registered before /leaves/{leaf_id} so "reorder" is not parsed as an id.
    @router.post("/{container_id}/leaves/reorder", response_model=ReorderResponse)
    async def reorder_leaves(
        container_id: uuid.UUID,
        body: ReorderRequest,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> ReorderResponse:
        updated = await hierarchy_service.reorder_container_leaves(
            db, hierarchy, current_user["user_id"], container_id,
            [(item.id, item.sort_order) for item in body.items],
        )
        return ReorderResponse(updated=updated)

    @router.post("/{container_id}/leaves/{leaf_id}", response_model=LinkResponse)
    async def attach_leaf(
        container_id: uuid.UUID,
        leaf_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> LinkResponse:
        link, created = await hierarchy_service.attach_to_container(
            db, hierarchy, current_user["user_id"], container_id, EntityLevel.LEAF, leaf_id
        )
        return LinkResponse(left_id=link.left_id, right_id=link.right_id, sort_order=link.sort_order, created=created)

    @router.delete("/{container_id}/leaves/{leaf_id}", response_model=MessageResponse)
    async def detach_leaf(
        container_id: uuid.UUID,
        leaf_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MessageResponse:
        await hierarchy_service.detach_leaf_from_container(
            db, hierarchy, current_user["user_id"], container_id, leaf_id
        )
        return MessageResponse(message="Link removed")

    return router
