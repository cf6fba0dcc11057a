# @TASK P3-T3.2 - Publication service tests

from __future__ import annotations

import asyncio
import uuid

import pytest

from tests.conftest import add_membership, create_user
from universo.constants import PublicationStatus
from universo.exceptions import ForbiddenError, NotFoundError
from universo.hierarchies import CAMPAIGNS, METAVERSES
from universo.services.hierarchy_service import create_container
from universo.services.publication_service import PublicationService

H = METAVERSES


@pytest.fixture
def service(session_factory):
    return PublicationService(session_factory=session_factory, delay_seconds=0, base_url="https://pub.test/")


async def _owned_container(db):
    owner = await create_user(db, "owner@example.com")
    container = await create_container(db, H, owner.id, "X")
    return owner, container


class TestPublish:
    @pytest.mark.asyncio
    async def test_pending_then_published(self, test_db, service):
        owner, container = await _owned_container(test_db)

        publication = await service.publish(test_db, H, owner.id, container.id, "site")
        assert publication.status == PublicationStatus.PENDING

        assert await service.wait_until_published(publication.id, timeout=5) is True
        await test_db.refresh(publication)
        assert publication.status == PublicationStatus.PUBLISHED
        assert publication.published_url == f"https://pub.test/{publication.id}"
        assert publication.published_at is not None
        assert service.pending_count == 0

    @pytest.mark.asyncio
    async def test_requires_manage_container(self, test_db, service):
        _, container = await _owned_container(test_db)
        editor = await create_user(test_db, "e@example.com")
        await add_membership(test_db, container.id, editor.id, "editor")

        with pytest.raises(ForbiddenError):
            await service.publish(test_db, H, editor.id, container.id, "site")
        assert service.pending_count == 0

    @pytest.mark.asyncio
    async def test_container_of_another_module(self, test_db, service):
        owner = await create_user(test_db, "owner@example.com")
        campaign = await create_container(test_db, CAMPAIGNS, owner.id, "launch")

        with pytest.raises(NotFoundError):
            await service.publish(test_db, H, owner.id, campaign.id, "site")


class TestWaitAndShutdown:
    @pytest.mark.asyncio
    async def test_unknown_publication(self, service):
        assert await service.wait_until_published(uuid.uuid4(), timeout=0.01) is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_and_leaves_pending(self, test_db, session_factory):
        slow = PublicationService(session_factory=session_factory, delay_seconds=60)
        owner, container = await _owned_container(test_db)
        publication = await slow.publish(test_db, H, owner.id, container.id, "site")

        assert await slow.wait_until_published(publication.id, timeout=0.01) is False
        await slow.shutdown()

        assert slow.pending_count == 0
        await test_db.refresh(publication)
        assert publication.status == PublicationStatus.PENDING
        assert publication.published_url is None

    @pytest.mark.asyncio
    async def test_waiters_are_released_together(self, test_db, service):
        owner, container = await _owned_container(test_db)
        publication = await service.publish(test_db, H, owner.id, container.id, "site")

        results = await asyncio.gather(
            service.wait_until_published(publication.id, timeout=5),
            service.wait_until_published(publication.id, timeout=5),
        )

        assert results == [True, True]


    @pytest.mark.asyncio
    async def test_finished_publications_are_not_retained(self, test_db, service):
        owner, container = await _owned_container(test_db)

        ids = []
        for name in ("one", "two", "three"):
            publication = await service.publish(test_db, H, owner.id, container.id, name)
            assert await service.wait_until_published(publication.id, timeout=5) is True
            ids.append(publication.id)

        assert service.pending_count == 0
        # Answered from the stored status once the task has finished.
        assert await service.wait_until_published(ids[0], timeout=0.01) is True

    @pytest.mark.asyncio
    async def test_failed_completion_releases_waiters(self, test_db, service, monkeypatch):
        async def broken(self, publication_id):
            raise RuntimeError("build failed")

        monkeypatch.setattr(PublicationService, "_mark_published", broken)
        owner, container = await _owned_container(test_db)
        publication = await service.publish(test_db, H, owner.id, container.id, "site")

        assert await service.wait_until_published(publication.id, timeout=5) is False

        assert service.pending_count == 0
        await test_db.refresh(publication)
        assert publication.status == PublicationStatus.FAILED
        assert publication.published_url is None
        assert await service.wait_until_published(publication.id, timeout=0.01) is False


class TestGet:
    @pytest.mark.asyncio
    async def test_members_can_read(self, test_db, service):
        owner, container = await _owned_container(test_db)
        member = await create_user(test_db, "m@example.com")
        await add_membership(test_db, container.id, member.id, "member")
        publication = await service.publish(test_db, H, owner.id, container.id, "site")
        await service.wait_until_published(publication.id, timeout=5)

        fetched = await service.get(test_db, H, member.id, publication.id)

        assert fetched.id == publication.id

    @pytest.mark.asyncio
    async def test_outsiders_cannot_read(self, test_db, service):
        owner, container = await _owned_container(test_db)
        outsider = await create_user(test_db, "o@example.com")
        publication = await service.publish(test_db, H, owner.id, container.id, "site")
        await service.wait_until_published(publication.id, timeout=5)

        with pytest.raises(ForbiddenError):
            await service.get(test_db, H, outsider.id, publication.id)

    @pytest.mark.asyncio
    async def test_unknown_id(self, test_db, service):
        owner, _ = await _owned_container(test_db)

        with pytest.raises(NotFoundError):
            await service.get(test_db, H, owner.id, uuid.uuid4())
