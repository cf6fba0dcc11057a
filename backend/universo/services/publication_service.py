# @TASK P3-T3.2 - Container publications as tracked background tasks

"""Publishing a container's project.

A publication row is created as ``pending`` and a background task flips it
to ``published`` after a simulated build delay. The service owns its tasks
so the application lifespan can cancel them on shutdown, and callers can
await completion through :meth:`PublicationService.wait_until_published`.
A completion that raises leaves the row ``failed``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from universo.config import get_settings
from universo.constants import EntityLevel, Permission, PublicationStatus
from universo.database import async_session_factory
from universo.exceptions import NotFoundError
from universo.hierarchies import Hierarchy
from universo.models import Publication
from universo.services.access_resolver import ensure_access
from universo.services.hierarchy_service import require_container

logger = logging.getLogger(__name__)


@dataclass
class _Completion:
    """Outcome of one scheduled publication, shared by all of its waiters."""

    done: asyncio.Event = field(default_factory=asyncio.Event)
    published: bool = False


class PublicationService:
    """Creates publications and completes them in the background."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        delay_seconds: float | None = None,
        base_url: str | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory or async_session_factory
        self._delay = settings.PUBLISH_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self._base_url = (base_url or settings.PUBLISH_BASE_URL).rstrip("/")
        self._tasks: dict[uuid.UUID, asyncio.Task] = {}
        self._completions: dict[uuid.UUID, _Completion] = {}

    @property
    def pending_count(self) -> int:
        """Publications scheduled by this service that have not finished yet."""
        return len(self._completions)

    async def publish(
        self,
        db: AsyncSession,
        hierarchy: Hierarchy,
        user_id: uuid.UUID,
        container_id: uuid.UUID,
        project_name: str,
        is_public: bool = True,
    ) -> Publication:
        """Create a pending publication and schedule its completion.

        The row is committed before the task starts so the task's own
        session can see it.
        """
        await require_container(db, hierarchy, container_id)
        await ensure_access(
            db, hierarchy, user_id, container_id, EntityLevel.CONTAINER, Permission.MANAGE_CONTAINER
        )
        publication = Publication(
            container_id=container_id,
            project_name=project_name,
            is_public=is_public,
            status=PublicationStatus.PENDING,
            created_by=user_id,
        )
        db.add(publication)
        await db.commit()

        self._completions[publication.id] = _Completion()
        self._tasks[publication.id] = asyncio.create_task(self._complete(publication.id))
        logger.info("Publication scheduled: id=%s container=%s", publication.id, container_id)
        return publication

    async def _complete(self, publication_id: uuid.UUID) -> None:
        """Background task body. Always releases waiters and forgets the publication."""
        completion = self._completions[publication_id]
        try:
            await asyncio.sleep(self._delay)
            completion.published = await self._mark_published(publication_id)
            if completion.published:
                logger.info("Publication completed: %s", publication_id)
            else:
                logger.error("Publication not found: %s", publication_id)
        except asyncio.CancelledError:
            logger.info("Publication cancelled before completion: %s", publication_id)
            raise
        except Exception:
            logger.exception("Publication failed: %s", publication_id)
            await self._mark_failed(publication_id)
        finally:
            completion.done.set()
            self._completions.pop(publication_id, None)
            self._tasks.pop(publication_id, None)

    async def _mark_published(self, publication_id: uuid.UUID) -> bool:
        async with self._session_factory() as db:
            publication = await db.get(Publication, publication_id)
            if publication is None:
                return False
            publication.status = PublicationStatus.PUBLISHED
            publication.published_url = f"{self._base_url}/{publication_id}"
            publication.published_at = datetime.now(UTC)
            await db.commit()
        return True

    async def _mark_failed(self, publication_id: uuid.UUID) -> None:
        try:
            async with self._session_factory() as db:
                publication = await db.get(Publication, publication_id)
                if publication is not None:
                    publication.status = PublicationStatus.FAILED
                    await db.commit()
        except Exception:
            logger.exception("Could not mark publication as failed: %s", publication_id)

    async def wait_until_published(self, publication_id: uuid.UUID, timeout: float | None = None) -> bool:
        """Wait for a publication to go live.

        Returns True once it is published and False when it failed, was
        cancelled, is unknown, or ``timeout`` expires first. Publications
        that already finished are answered from the database.
        """
        completion = self._completions.get(publication_id)
        if completion is None:
            async with self._session_factory() as db:
                publication = await db.get(Publication, publication_id)
                return publication is not None and publication.status == PublicationStatus.PUBLISHED
        try:
            await asyncio.wait_for(completion.done.wait(), timeout)
        except TimeoutError:
            return False
        return completion.published

    async def get(
        self,
        db: AsyncSession,
        hierarchy: Hierarchy,
        user_id: uuid.UUID,
        publication_id: uuid.UUID,
    ) -> Publication:
        result = await db.execute(select(Publication).where(Publication.id == publication_id))
        publication = result.scalar_one_or_none()
        if publication is None:
            raise NotFoundError("Publication not found")
        await require_container(db, hierarchy, publication.container_id)
        await ensure_access(db, hierarchy, user_id, publication.container_id, EntityLevel.CONTAINER)
        return publication

    async def shutdown(self) -> None:
        """Cancel outstanding tasks. Cancelled publications stay pending."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._completions.clear()
