# @TASK P5-T5.5 - Publication endpoints

"""Publish a container's project and poll its status.

- ``POST /containers/{id}/publications`` -- manageContainer
- ``GET  /publications/{id}``            -- any member of the container
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from universo.api.deps import get_publication_service
from universo.database import get_db
from universo.hierarchies import Hierarchy
from universo.models import Publication
from universo.services.activity_log import get_trigger_name, log_activity
from universo.services.auth_service import get_current_user
from universo.services.publication_service import PublicationService


class PublishRequest(BaseModel):
    project_name: str = Field(min_length=1, max_length=255)
    is_public: bool = True


class PublicationResponse(BaseModel):
    id: uuid.UUID
    container_id: uuid.UUID
    project_name: str
    status: str
    is_public: bool
    published_url: str | None
    created_at: datetime
    published_at: datetime | None


def _to_response(publication: Publication) -> PublicationResponse:
    return PublicationResponse(
        id=publication.id,
        container_id=publication.container_id,
        project_name=publication.project_name,
        status=publication.status,
        is_public=publication.is_public,
        published_url=publication.published_url,
        created_at=publication.created_at,
        published_at=publication.published_at,
    )


def build_router(hierarchy: Hierarchy) -> APIRouter:
    router = APIRouter()

    @router.post(
        "/containers/{container_id}/publications",
        response_model=PublicationResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def publish_container(
        container_id: uuid.UUID,
        body: PublishRequest,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
        publications: PublicationService = Depends(get_publication_service),  # noqa: B008
    ) -> PublicationResponse:
        publication = await publications.publish(
            db, hierarchy, current_user["user_id"], container_id, body.project_name, body.is_public
        )
        await log_activity(
            db, "publication", "started",
            message=f"Publication scheduled: {body.project_name}",
            details={"id": str(publication.id), "container_id": str(container_id)},
            triggered_by=get_trigger_name(current_user),
        )
        return _to_response(publication)

    @router.get("/publications/{publication_id}", response_model=PublicationResponse)
    async def get_publication(
        publication_id: uuid.UUID,
        current_user: dict = Depends(get_current_user),  # noqa: B008
        db: AsyncSession = Depends(get_db),  # noqa: B008
        publications: PublicationService = Depends(get_publication_service),  # noqa: B008
    ) -> PublicationResponse:
        publication = await publications.get(db, hierarchy, current_user["user_id"], publication_id)
        return _to_response(publication)

    return router
