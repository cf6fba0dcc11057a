# @TASK P3-T3.1 - Container / mid-level / leaf service tests

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import func, select

from tests.conftest import add_membership, create_node, create_user, link
from universo.constants import EntityLevel, MemberRole
from universo.exceptions import ForbiddenError, InvalidReferenceError, NotFoundError
from universo.hierarchies import CAMPAIGNS, METAVERSES, RESOURCES
from universo.models import ContainerMembership, Link, Node
from universo.services import hierarchy_service as svc
from universo.services.access_resolver import resolve_access
from universo.services.global_access import grant_global_role

H = METAVERSES


async def _setup(db):
    owner = await create_user(db, "owner@example.com")
    container = await svc.create_container(db, H, owner.id, "X", "first")
    section = await svc.create_mid_level(db, H, owner.id, container.id, "M")
    return owner, container, section


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestContainers:
    @pytest.mark.asyncio
    async def test_create_makes_creator_owner(self, test_db):
        owner = await create_user(test_db, "owner@example.com")

        container = await svc.create_container(test_db, H, owner.id, "X")

        membership = (await test_db.execute(select(ContainerMembership))).scalar_one()
        assert container.kind == "metaverse"
        assert membership.user_id == owner.id
        assert membership.role == MemberRole.OWNER

    @pytest.mark.asyncio
    async def test_list_only_own_containers_with_counts(self, test_db):
        owner, container, section = await _setup(test_db)
        await svc.create_leaf(test_db, H, owner.id, section.id, "L", container_id=container.id)
        stranger = await create_user(test_db, "s@example.com")
        await svc.create_container(test_db, H, stranger.id, "not mine")

        page = await svc.list_containers(test_db, H, owner.id)

        assert (len(page.items), page.total) == (1, 1)
        summary = page.items[0]
        assert (summary.name, summary.role, summary.mid_level_count, summary.leaf_count) == ("X", "owner", 1, 1)

    @pytest.mark.asyncio
    async def test_list_sorting_and_paging(self, test_db):
        owner = await create_user(test_db, "owner@example.com")
        for name in ("b", "c", "a"):
            await svc.create_container(test_db, H, owner.id, name)

        ordered = await svc.list_containers(test_db, H, owner.id, sort_by="name", sort_order="asc")
        paged = await svc.list_containers(test_db, H, owner.id, limit=1, offset=1, sort_by="name", sort_order="asc")

        assert [s.name for s in ordered.items] == ["a", "b", "c"]
        assert [s.name for s in paged.items] == ["b"]
        assert (paged.total, paged.limit, paged.offset) == (3, 1, 1)

    @pytest.mark.asyncio
    async def test_list_total_past_the_last_page(self, test_db):
        owner = await create_user(test_db, "owner@example.com")
        for name in ("a", "b"):
            await svc.create_container(test_db, H, owner.id, name)

        page = await svc.list_containers(test_db, H, owner.id, offset=10)

        assert (page.items, page.total) == ([], 2)

    @pytest.mark.asyncio
    async def test_list_default_limit(self, test_db):
        owner = await create_user(test_db, "owner@example.com")

        page = await svc.list_containers(test_db, H, owner.id)

        assert page.limit == 100

    @pytest.mark.asyncio
    async def test_list_search_matches_name_or_description(self, test_db):
        owner = await create_user(test_db, "owner@example.com")
        await svc.create_container(test_db, H, owner.id, "Harbor")
        await svc.create_container(test_db, H, owner.id, "Other", "near the HARBOR")
        await svc.create_container(test_db, H, owner.id, "100% done")
        await svc.create_container(test_db, H, owner.id, "Unrelated")

        harbor = await svc.list_containers(test_db, H, owner.id, sort_by="name", sort_order="asc", search="harbor")
        percent = await svc.list_containers(test_db, H, owner.id, search="%")

        assert [s.name for s in harbor.items] == ["Harbor", "Other"]
        assert [s.name for s in percent.items] == ["100% done"]

    @pytest.mark.asyncio
    async def test_show_all_lists_every_container_for_global_admins(self, test_db):
        owner = await create_user(test_db, "owner@example.com")
        await svc.create_container(test_db, H, owner.id, "theirs")
        admin = await create_user(test_db, "admin@example.com")
        await svc.create_container(test_db, H, admin.id, "mine")
        await grant_global_role(test_db, admin.id, "superadmin")

        own = await svc.list_containers(test_db, H, admin.id)
        every = await svc.list_containers(test_db, H, admin.id, sort_by="name", sort_order="asc", show_all=True)

        assert [s.name for s in own.items] == ["mine"]
        assert [(s.name, s.role, s.access_type) for s in every.items] == [
            ("mine", MemberRole.OWNER, "member"),
            ("theirs", MemberRole.OWNER, "superadmin"),
        ]
        assert every.total == 2

    @pytest.mark.asyncio
    async def test_show_all_without_global_role_lists_own(self, test_db):
        owner = await create_user(test_db, "owner@example.com")
        await svc.create_container(test_db, H, owner.id, "theirs")
        user = await create_user(test_db, "u@example.com")
        await grant_global_role(test_db, user.id, "auditor", grants_global_access=False)

        page = await svc.list_containers(test_db, H, user.id, show_all=True)

        assert (page.items, page.total) == ([], 0)

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_the_module(self, test_db):
        owner = await create_user(test_db, "owner@example.com")
        await svc.create_container(test_db, CAMPAIGNS, owner.id, "launch")

        assert (await svc.list_containers(test_db, H, owner.id)).items == []

    @pytest.mark.asyncio
    async def test_get_returns_role(self, test_db):
        owner, container, _ = await _setup(test_db)
        viewer = await create_user(test_db, "v@example.com")
        await add_membership(test_db, container.id, viewer.id, "member")

        details = await svc.get_container(test_db, H, viewer.id, container.id)

        assert details.node.id == container.id
        assert details.role == MemberRole.MEMBER
        assert (details.mid_level_count, details.leaf_count, details.members_count) == (1, 0, 2)
        assert details.access_type == "member"
        assert details.permissions == {
            "manageMembers": False,
            "manageContainer": False,
            "createContent": False,
            "editContent": False,
            "deleteContent": False,
        }

    @pytest.mark.asyncio
    async def test_editor_cannot_rename(self, test_db):
        _, container, _ = await _setup(test_db)
        editor = await create_user(test_db, "e@example.com")
        await add_membership(test_db, container.id, editor.id, "editor")

        with pytest.raises(ForbiddenError):
            await svc.update_container(test_db, H, editor.id, container.id, "renamed")

    @pytest.mark.asyncio
    async def test_admin_renames(self, test_db):
        _, container, _ = await _setup(test_db)
        admin = await create_user(test_db, "a@example.com")
        await add_membership(test_db, container.id, admin.id, "admin")

        node, role = await svc.update_container(test_db, H, admin.id, container.id, "renamed", "new")

        assert (node.name, node.description, role) == ("renamed", "new", MemberRole.ADMIN)

    @pytest.mark.asyncio
    async def test_delete_cascades_links_and_memberships(self, test_db):
        owner, container, section = await _setup(test_db)
        await svc.create_leaf(test_db, H, owner.id, section.id, "L", container_id=container.id)

        await svc.delete_container(test_db, H, owner.id, container.id)

        assert await _count(test_db, ContainerMembership) == 0
        assert await _count(test_db, Link) == 1  # section -> leaf survives
        remaining = {n.kind for n in (await test_db.execute(select(Node))).scalars()}
        assert remaining == {"section", "entity"}

    @pytest.mark.asyncio
    async def test_container_of_another_module_is_not_found(self, test_db):
        owner = await create_user(test_db, "owner@example.com")
        campaign = await svc.create_container(test_db, CAMPAIGNS, owner.id, "launch")

        with pytest.raises(NotFoundError):
            await svc.get_container(test_db, H, owner.id, campaign.id)


class TestMidLevelsAndLeaves:
    @pytest.mark.asyncio
    async def test_show_all_listings_for_global_admins(self, test_db):
        owner, _, section = await _setup(test_db)
        await svc.create_leaf(test_db, H, owner.id, section.id, "L")
        await create_node(test_db, H.leaf, "unlinked")
        admin = await create_user(test_db, "admin@example.com")
        await grant_global_role(test_db, admin.id, "superadmin")

        own_leaves = await svc.list_leaves(test_db, H, admin.id)
        all_leaves = await svc.list_leaves(test_db, H, admin.id, show_all=True)
        all_mid_levels = await svc.list_mid_levels(test_db, H, admin.id, show_all=True)

        assert own_leaves == []
        assert [leaf.name for leaf in all_leaves] == ["L", "unlinked"]
        assert [node.name for node in all_mid_levels] == ["M"]

    @pytest.mark.asyncio
    async def test_show_all_is_ignored_without_global_access(self, test_db):
        owner, _, section = await _setup(test_db)
        await svc.create_leaf(test_db, H, owner.id, section.id, "L")
        stranger = await create_user(test_db, "s@example.com")

        assert await svc.list_leaves(test_db, H, stranger.id, show_all=True) == []
        assert await svc.list_mid_levels(test_db, H, stranger.id, show_all=True) == []

    @pytest.mark.asyncio
    async def test_mid_level_is_linked_to_container(self, test_db):
        _, container, section = await _setup(test_db)

        links = (await test_db.execute(select(Link))).scalars().all()

        assert [(l.left_id, l.right_id) for l in links] == [(container.id, section.id)]

    @pytest.mark.asyncio
    async def test_mid_level_in_unknown_container_is_invalid_reference(self, test_db):
        owner = await create_user(test_db, "owner@example.com")

        with pytest.raises(InvalidReferenceError):
            await svc.create_mid_level(test_db, H, owner.id, uuid.uuid4(), "M")

    @pytest.mark.asyncio
    async def test_member_cannot_create_content(self, test_db):
        _, container, section = await _setup(test_db)
        member = await create_user(test_db, "m@example.com")
        await add_membership(test_db, container.id, member.id, "member")

        with pytest.raises(ForbiddenError):
            await svc.create_mid_level(test_db, H, member.id, container.id, "M2")
        with pytest.raises(ForbiddenError):
            await svc.create_leaf(test_db, H, member.id, section.id, "L")

    @pytest.mark.asyncio
    async def test_leaf_with_unknown_mid_level_writes_nothing(self, test_db):
        owner, container, _ = await _setup(test_db)
        before = await _count(test_db, Node)

        with pytest.raises(InvalidReferenceError):
            await svc.create_leaf(test_db, H, owner.id, uuid.uuid4(), "L", container_id=container.id)
        assert await _count(test_db, Node) == before

    @pytest.mark.asyncio
    async def test_leaf_with_unknown_container_writes_nothing(self, test_db):
        owner, _, section = await _setup(test_db)
        before = await _count(test_db, Node)

        with pytest.raises(InvalidReferenceError):
            await svc.create_leaf(test_db, H, owner.id, section.id, "L", container_id=uuid.uuid4())
        assert await _count(test_db, Node) == before

    @pytest.mark.asyncio
    async def test_editor_edits_and_deletes_leaf(self, test_db):
        owner, container, section = await _setup(test_db)
        editor = await create_user(test_db, "e@example.com")
        await add_membership(test_db, container.id, editor.id, "editor")
        leaf = await svc.create_leaf(test_db, H, editor.id, section.id, "L")

        updated = await svc.update_entity(test_db, H, editor.id, EntityLevel.LEAF, leaf.id, name="L2")
        assert updated.name == "L2"

        await svc.delete_entity(test_db, H, editor.id, EntityLevel.LEAF, leaf.id)
        with pytest.raises(NotFoundError):
            await svc.get_entity(test_db, H, owner.id, EntityLevel.LEAF, leaf.id)

    @pytest.mark.asyncio
    async def test_children_listed_in_link_order(self, test_db):
        owner, container, section = await _setup(test_db)
        first = await svc.create_leaf(test_db, H, owner.id, section.id, "first", container_id=container.id)
        second = await svc.create_leaf(test_db, H, owner.id, section.id, "second", container_id=container.id)
        await svc.reorder_container_leaves(test_db, H, owner.id, container.id, [(first.id, 2), (second.id, 1)])

        entries = await svc.list_container_children(test_db, H, owner.id, container.id, EntityLevel.LEAF)

        assert [(e.node.name, e.sort_order) for e in entries] == [("second", 1), ("first", 2)]


class TestLinks:
    @pytest.mark.asyncio
    async def test_attach_is_idempotent(self, test_db):
        owner, container, section = await _setup(test_db)
        leaf = await svc.create_leaf(test_db, H, owner.id, section.id, "L")

        _, created = await svc.attach_to_container(test_db, H, owner.id, container.id, EntityLevel.LEAF, leaf.id)
        _, created_again = await svc.attach_to_container(test_db, H, owner.id, container.id, EntityLevel.LEAF, leaf.id)

        assert (created, created_again) == (True, False)

    @pytest.mark.asyncio
    async def test_cannot_attach_a_leaf_from_another_container(self, test_db):
        victim = await create_user(test_db, "victim@example.com")
        victim_container = await svc.create_container(test_db, H, victim.id, "private")
        victim_leaf = await create_node(test_db, H.leaf, "secret")
        await link(test_db, victim_container, victim_leaf)
        attacker = await create_user(test_db, "attacker@example.com")
        attacker_container = await svc.create_container(test_db, H, attacker.id, "mine")

        with pytest.raises(ForbiddenError):
            await svc.attach_to_container(
                test_db, H, attacker.id, attacker_container.id, EntityLevel.LEAF, victim_leaf.id
            )

        verdict = await resolve_access(test_db, H, attacker.id, victim_leaf.id, EntityLevel.LEAF)
        assert verdict.granted is False
        assert await _count(test_db, Link) == 1

    @pytest.mark.asyncio
    async def test_cannot_attach_a_mid_level_from_another_container(self, test_db):
        _, _, victim_section = await _setup(test_db)
        attacker = await create_user(test_db, "attacker@example.com")
        attacker_container = await svc.create_container(test_db, H, attacker.id, "mine")

        with pytest.raises(ForbiddenError):
            await svc.attach_to_container(
                test_db, H, attacker.id, attacker_container.id, EntityLevel.MID_LEVEL, victim_section.id
            )

    @pytest.mark.asyncio
    async def test_detach_missing_link_is_not_found(self, test_db):
        owner, container, section = await _setup(test_db)
        leaf = await svc.create_leaf(test_db, H, owner.id, section.id, "L")

        with pytest.raises(NotFoundError):
            await svc.detach_leaf_from_container(test_db, H, owner.id, container.id, leaf.id)

    @pytest.mark.asyncio
    async def test_move_leaf_between_mid_levels(self, test_db):
        owner, container, section = await _setup(test_db)
        other = await svc.create_mid_level(test_db, H, owner.id, container.id, "M2")
        leaf = await svc.create_leaf(test_db, H, owner.id, section.id, "L")

        _, created = await svc.link_leaf_to_mid_level(test_db, H, owner.id, leaf.id, other.id, replace=True)

        assert created is True
        mid_links = (await test_db.execute(select(Link).where(Link.right_id == leaf.id))).scalars().all()
        assert [l.left_id for l in mid_links] == [other.id]

    @pytest.mark.asyncio
    async def test_additional_mid_level_keeps_existing_link(self, test_db):
        owner, container, section = await _setup(test_db)
        other = await svc.create_mid_level(test_db, H, owner.id, container.id, "M2")
        leaf = await svc.create_leaf(test_db, H, owner.id, section.id, "L")

        await svc.link_leaf_to_mid_level(test_db, H, owner.id, leaf.id, other.id)

        assert await svc.detach_leaf_from_mid_levels(test_db, H, owner.id, leaf.id) == 2
        with pytest.raises(NotFoundError):
            await svc.get_entity(test_db, H, owner.id, EntityLevel.LEAF, leaf.id)


class TestComposition:
    @pytest.mark.asyncio
    async def test_disabled_outside_resources(self, test_db):
        owner, _, section = await _setup(test_db)
        leaf = await svc.create_leaf(test_db, H, owner.id, section.id, "L")

        with pytest.raises(NotFoundError):
            await svc.get_composition_tree(test_db, H, owner.id, leaf.id)

    @pytest.mark.asyncio
    async def test_resources_compose_with_access_checks(self, test_db):
        owner = await create_user(test_db, "owner@example.com")
        cluster = await svc.create_container(test_db, RESOURCES, owner.id, "cluster")
        domain = await svc.create_mid_level(test_db, RESOURCES, owner.id, cluster.id, "domain")
        engine = await svc.create_leaf(test_db, RESOURCES, owner.id, domain.id, "engine")
        bolt = await svc.create_leaf(test_db, RESOURCES, owner.id, domain.id, "bolt")
        outsider = await create_user(test_db, "o@example.com")

        await svc.add_composition_child(test_db, RESOURCES, owner.id, engine.id, bolt.id)
        tree = await svc.get_composition_tree(test_db, RESOURCES, owner.id, engine.id)

        assert [c.node.entity.name for c in tree.children] == ["bolt"]
        with pytest.raises(ForbiddenError):
            await svc.get_composition_tree(test_db, RESOURCES, outsider.id, engine.id)

        await svc.remove_composition_child(test_db, RESOURCES, owner.id, engine.id, bolt.id)
        with pytest.raises(NotFoundError):
            await svc.remove_composition_child(test_db, RESOURCES, owner.id, engine.id, bolt.id)
