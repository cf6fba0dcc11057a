# @TASK P5-T5.2 - Container membership endpoints

"""Membership endpoints of one hierarchy's containers.

- ``GET    /containers/{id}/members``                  -- any member
- ``POST   /containers/{id}/members``                  -- manageMembers
- ``PATCH  /containers/{id}/members/{membership_id}``  -- manageMembers, never the owner
- ``DELETE /containers/{id}/members/{membership_id}``  -- manageMembers, never the owner
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from universo.api.schemas import MessageResponse
from universo.constants import EntityLevel, MemberRole
from universo.database import get_db
from universo.hierarchies import Hierarchy
from universo.services import membership_service
from universo.services.access_resolver import ensure_access
from universo.services.activity_log import get_trigger_name, log_activity
from universo.services.auth_service import get_current_user
from universo.services.hierarchy_service import require_container

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


def _known_role(value: str) -> str:
    # Includes "owner"; the service rejects that one as an owner mutation.
    valid_roles = {role.value for role in MemberRole}
    if value not in valid_roles:
        raise ValueError(f"Role must be one of: {', '.join(sorted(valid_roles))}")
    return value


class MemberResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    email: str
    display_name: str
    role: str
    comment: str | None
    created_at: datetime


class MemberListResponse(BaseModel):
    members: list[MemberResponse]
    total: int


class InviteRequest(BaseModel):
    """Add an existing user to the container."""

    email: EmailStr
    role: str = MemberRole.MEMBER
    comment: str | None = Field(default=None, max_length=1000)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        return _known_role(v)


class UpdateMemberRequest(BaseModel):
    role: str | None = None
    comment: str | None = Field(default=None, max_length=1000)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str | None) -> str | None:
        return None if v is None else _known_role(v)


class MembershipResponse(BaseModel):
    id: uuid.UUID
    container_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    comment: str | None


def build_router(hierarchy: Hierarchy) -> APIRouter:
    router = APIRouter(prefix="/containers/{container_id}/members")

    @router.get("", response_model=MemberListResponse)
    async def list_members(
        container_id: uuid.UUID,
        limit: str | None = None,
        offset: str | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
        search: str | None = None,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MemberListResponse:
        await require_container(db, hierarchy, container_id)
        await ensure_access(db, hierarchy, current_user["user_id"], container_id, EntityLevel.CONTAINER)
        params = membership_service.MemberListParams.from_query(limit, offset, sort_by, sort_order, search)
        page = await membership_service.list_members(db, container_id, params)
        return MemberListResponse(
            members=[
                MemberResponse(
                    id=m.id,
                    user_id=m.user_id,
                    email=m.email,
                    display_name=m.display_name,
                    role=m.role,
                    comment=m.comment,
                    created_at=m.created_at,
                )
                for m in page.members
            ],
            total=page.total,
        )

    @router.post("", response_model=MembershipResponse, status_code=status.HTTP_201_CREATED)
    async def invite_member(
        container_id: uuid.UUID,
        body: InviteRequest,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MembershipResponse:
        await require_container(db, hierarchy, container_id)
        membership = await membership_service.invite_member(
            db, current_user["user_id"], container_id, body.email, body.role, body.comment
        )
        await log_activity(
            db, "member", "completed",
            message=f"Member invited: {body.email}",
            details={"container_id": str(container_id), "role": str(membership.role)},
            triggered_by=get_trigger_name(current_user),
        )
        return MembershipResponse(
            id=membership.id,
            container_id=membership.container_id,
            user_id=membership.user_id,
            role=membership.role,
            comment=membership.comment,
        )

    @router.patch("/{membership_id}", response_model=MembershipResponse)
    async def update_member(
        container_id: uuid.UUID,
        membership_id: uuid.UUID,
        body: UpdateMemberRequest,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MembershipResponse:
        await require_container(db, hierarchy, container_id)
        membership = await membership_service.update_member(
            db, current_user["user_id"], container_id, membership_id, body.role, body.comment
        )
        await log_activity(
            db, "member", "completed",
            message="Member updated",
            details={"container_id": str(container_id), "membership_id": str(membership_id), "role": body.role},
            triggered_by=get_trigger_name(current_user),
        )
        return MembershipResponse(
            id=membership.id,
            container_id=membership.container_id,
            user_id=membership.user_id,
            role=membership.role,
            comment=membership.comment,
        )

    @router.delete("/{membership_id}", response_model=MessageResponse)
    async def remove_member(
        container_id: uuid.UUID,
        membership_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
    ) -> MessageResponse:
        await require_container(db, hierarchy, container_id)
        await membership_service.remove_member(db, current_user["user_id"], container_id, membership_id)
        await log_activity(
            db, "member", "completed",
            message="Member removed",
            details={"container_id": str(container_id), "membership_id": str(membership_id)},
            triggered_by=get_trigger_name(current_user),
        )
        return MessageResponse(message="Member removed")

    return router
