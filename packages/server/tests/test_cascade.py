"""
Tests for the cascade calculator (pure change computation, nothing written).
"""

from __future__ import annotations

import pytest

from app.core.errors import ValidationError
from app.services.cascade import CascadeCalculator

from taskgate_shared.schemas.common import AccessLevel, Propagation, Verb
from taskgate_shared.schemas.permissions import ActionRequest


def _request(verb, resource_type, uid, actor, target, level=None) -> ActionRequest:
    return ActionRequest(
        verb=verb,
        actor_user_id=actor.id,
        target_user_id=target.id,
        resource_type=resource_type,
        resource_uid=uid,
        access_level=level,
    )


def _upserts(changes):
    return {(r.resource_type, r.resource_uid): (r.access_level, r.propagation) for r in changes.upserts}


def _deletes(changes):
    return {(k.resource_type, k.resource_uid): k.propagations for k in changes.deletes}


class TestProjectCascade:
    @pytest.mark.asyncio
    async def test_grant_covers_tasks_subtasks_and_notes(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        project = await seed.project(owner)
        t1 = await seed.task(owner, project=project)
        t2 = await seed.task(owner, project=project)
        sub = await seed.task(owner, parent=t1)
        n1 = await seed.note(owner, project=project)
        await seed.task(owner, name="outside")

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.SHARE_GRANT, _request(Verb.SHARE_GRANT, "project", project.uid, owner, sharee, AccessLevel.RW)
        )

        assert _upserts(changes) == {
            ("project", project.uid): (AccessLevel.RW, Propagation.DIRECT),
            ("task", t1.uid): (AccessLevel.RW, Propagation.INHERITED),
            ("task", t2.uid): (AccessLevel.RW, Propagation.INHERITED),
            ("task", sub.uid): (AccessLevel.RW, Propagation.INHERITED),
            ("note", n1.uid): (AccessLevel.RW, Propagation.INHERITED),
        }
        assert changes.deletes == []
        assert all(r.granted_by_user_id == owner.id for r in changes.upserts)

    @pytest.mark.asyncio
    async def test_revoke_only_strips_inherited_descendants(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        project = await seed.project(owner)
        task = await seed.task(owner, project=project)

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.SHARE_REVOKE, _request(Verb.SHARE_REVOKE, "project", project.uid, owner, sharee)
        )

        deletes = _deletes(changes)
        assert deletes[("project", project.uid)] is None
        assert deletes[("task", task.uid)] == frozenset({Propagation.INHERITED})
        assert changes.upserts == []

    @pytest.mark.asyncio
    async def test_revoke_regrants_through_membership(self, ctx, seed):
        owner = await seed.user("owner")
        admin = await seed.user("admin")
        area = await seed.area(owner)
        await seed.member(area, admin, "admin")
        project = await seed.project(owner, area=area)
        task = await seed.task(owner, project=project)
        note = await seed.note(owner, project=project)

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.SHARE_REVOKE, _request(Verb.SHARE_REVOKE, "project", project.uid, owner, admin)
        )

        assert set(_deletes(changes)) == {("project", project.uid), ("task", task.uid), ("note", note.uid)}
        assert _upserts(changes) == {
            ("project", project.uid): (AccessLevel.ADMIN, Propagation.INHERITED),
            ("task", task.uid): (AccessLevel.ADMIN, Propagation.INHERITED),
            ("note", note.uid): (AccessLevel.ADMIN, Propagation.INHERITED),
        }


class TestTaskCascade:
    @pytest.mark.asyncio
    async def test_grant_is_subtree_only(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        project = await seed.project(owner)
        parent = await seed.task(owner, project=project)
        target = await seed.task(owner, parent=parent)
        child = await seed.task(owner, parent=target)
        grandchild = await seed.task(owner, parent=child)
        sibling = await seed.task(owner, parent=parent)

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.SHARE_GRANT, _request(Verb.SHARE_GRANT, "task", target.uid, owner, sharee, AccessLevel.RO)
        )

        touched = set(_upserts(changes))
        assert touched == {("task", target.uid), ("task", child.uid), ("task", grandchild.uid)}
        assert ("task", sibling.uid) not in touched
        assert ("task", parent.uid) not in touched
        assert ("project", project.uid) not in touched
        assert _upserts(changes)[("task", target.uid)][1] == Propagation.DIRECT

    @pytest.mark.asyncio
    async def test_revoke_regrants_at_strongest_remaining_level(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        project = await seed.project(owner)
        top = await seed.task(owner, project=project)
        target = await seed.task(owner, parent=top)
        child = await seed.task(owner, parent=target)
        await seed.permission(sharee, "task", top.uid, "rw", "direct")
        await seed.permission(sharee, "project", project.uid, "ro", "direct")
        await seed.permission(sharee, "task", target.uid, "admin", "direct")

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.SHARE_REVOKE, _request(Verb.SHARE_REVOKE, "task", target.uid, owner, sharee)
        )

        assert _upserts(changes) == {
            ("task", target.uid): (AccessLevel.RW, Propagation.INHERITED),
            ("task", child.uid): (AccessLevel.RW, Propagation.INHERITED),
        }

    @pytest.mark.asyncio
    async def test_subscription_rows_do_not_cover_revokes(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        project = await seed.project(owner)
        top = await seed.task(owner, project=project)
        target = await seed.task(owner, parent=top)
        await seed.permission(sharee, "task", top.uid, "rw", "subscription")

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.SHARE_REVOKE, _request(Verb.SHARE_REVOKE, "task", target.uid, owner, sharee)
        )
        assert changes.upserts == []


class TestAreaCascade:
    @pytest.mark.asyncio
    async def test_member_add_reaches_every_project(self, ctx, seed):
        owner = await seed.user("owner")
        member = await seed.user("member")
        area = await seed.area(owner)
        p1 = await seed.project(owner, area=area)
        p2 = await seed.project(owner, area=area)
        task = await seed.task(owner, project=p1)
        note = await seed.note(owner, project=p2)
        await seed.project(owner, name="not in area")

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.AREA_MEMBER_ADD,
            _request(Verb.AREA_MEMBER_ADD, "area", area.uid, owner, member, AccessLevel.RW),
        )

        assert _upserts(changes) == {
            ("area", area.uid): (AccessLevel.RW, Propagation.AREA_MEMBERSHIP),
            ("project", p1.uid): (AccessLevel.RW, Propagation.INHERITED),
            ("project", p2.uid): (AccessLevel.RW, Propagation.INHERITED),
            ("task", task.uid): (AccessLevel.RW, Propagation.INHERITED),
            ("note", note.uid): (AccessLevel.RW, Propagation.INHERITED),
        }

    @pytest.mark.asyncio
    async def test_role_update_regrants_with_new_level(self, ctx, seed):
        owner = await seed.user("owner")
        member = await seed.user("member")
        area = await seed.area(owner)
        project = await seed.project(owner, area=area)

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.AREA_MEMBER_ROLE_UPDATE,
            _request(Verb.AREA_MEMBER_ROLE_UPDATE, "area", area.uid, owner, member, AccessLevel.ADMIN),
        )
        assert _upserts(changes)[("project", project.uid)] == (AccessLevel.ADMIN, Propagation.INHERITED)

    @pytest.mark.asyncio
    async def test_member_remove_deletes(self, ctx, seed):
        owner = await seed.user("owner")
        member = await seed.user("member")
        area = await seed.area(owner)
        project = await seed.project(owner, area=area)

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.AREA_MEMBER_REMOVE, _request(Verb.AREA_MEMBER_REMOVE, "area", area.uid, owner, member)
        )
        assert set(_deletes(changes)) == {("area", area.uid), ("project", project.uid)}

    @pytest.mark.asyncio
    async def test_member_remove_keeps_explicit_share_subtrees(self, ctx, seed):
        owner = await seed.user("owner")
        member = await seed.user("member")
        area = await seed.area(owner)
        shared = await seed.project(owner, area=area)
        shared_task = await seed.task(owner, project=shared)
        shared_note = await seed.note(owner, project=shared)
        plain = await seed.project(owner, area=area)
        parent = await seed.task(owner, project=plain)
        child = await seed.task(owner, parent=parent)
        await seed.task(owner, project=plain, name="untouched")
        await seed.permission(member, "project", shared.uid, "ro", "direct")
        await seed.permission(member, "task", parent.uid, "rw", "manual")

        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.AREA_MEMBER_REMOVE, _request(Verb.AREA_MEMBER_REMOVE, "area", area.uid, owner, member)
        )

        assert _upserts(changes) == {
            ("task", shared_task.uid): (AccessLevel.RO, Propagation.INHERITED),
            ("note", shared_note.uid): (AccessLevel.RO, Propagation.INHERITED),
            ("task", child.uid): (AccessLevel.RW, Propagation.INHERITED),
        }


class TestEdgeCases:
    @pytest.mark.asyncio
    async def test_note_grant_is_single_row(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        note = await seed.note(owner)
        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.SHARE_GRANT, _request(Verb.SHARE_GRANT, "note", note.uid, owner, sharee, AccessLevel.RO)
        )
        assert _upserts(changes) == {("note", note.uid): (AccessLevel.RO, Propagation.DIRECT)}

    @pytest.mark.asyncio
    async def test_tag_is_noop(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.TAG, _request(Verb.TAG, "tag", "t-1", owner, sharee)
        )
        assert changes.is_empty()

    @pytest.mark.asyncio
    async def test_missing_resource_is_empty(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        changes = await CascadeCalculator(ctx.store).calculate(
            Verb.SHARE_GRANT, _request(Verb.SHARE_GRANT, "project", "nope", owner, sharee, AccessLevel.RO)
        )
        assert changes.is_empty()

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, ctx, seed):
        owner = await seed.user("owner")
        sharee = await seed.user("sharee")
        with pytest.raises(ValidationError):
            await CascadeCalculator(ctx.store).calculate(
                Verb.SHARE_GRANT, _request(Verb.SHARE_GRANT, "folder", "f-1", owner, sharee, AccessLevel.RO)
            )
