"""
Integration tests for department membership.

Tests cover:
- Single-department invariant and duplicate membership
- Authorization of membership changes
- Cascade on add, remove and role change
- Admin subscriber bookkeeping on promotion and demotion
- Owner removal by a super-admin (ownership transfer)
- Committed membership state when notifications fail
"""

from __future__ import annotations

import pytest
from sqlmodel import select

from app.core.errors import Conflict, Forbidden, NotFound, ValidationError
from app.models.area_member import AreaMember
from app.models.permission import Permission
from app.services import areas


class TestAddMember:
    @pytest.mark.asyncio
    async def test_add_member_cascades_rw(self, ctx, seed, notifier):
        owner = await seed.user("owner")
        user = await seed.user("new")
        area = await seed.area(owner)
        project = await seed.project(owner, area=area)
        task = await seed.task(owner, project=project)

        members = await areas.add_member(ctx, area.uid, user.id, None, owner.id)

        assert [m.user_id for m in members] == [user.id]
        assert members[0].role.value == "member"
        rows = await seed.permissions(user)
        assert rows[("area", area.uid)] == ("rw", "area_membership")
        assert rows[("project", project.uid)] == ("rw", "inherited")
        assert rows[("task", task.uid)] == ("rw", "inherited")
        assert notifier.events[-1][0] == "area.member_added"

    @pytest.mark.asyncio
    async def test_add_admin_subscribes_them(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("new-admin")
        area = await seed.area(owner)

        await areas.add_member(ctx, area.uid, user.id, "admin", owner.id)

        assert await seed.members(area) == {user.id: "admin"}
        assert await seed.area_subscribers(area) == {user.id: "admin_role"}
        assert (await seed.permissions(user))[("area", area.uid)] == ("admin", "area_membership")

    @pytest.mark.asyncio
    async def test_single_department_invariant(self, ctx, seed):
        owner_a = await seed.user("owner-a")
        owner_b = await seed.user("owner-b")
        user = await seed.user("user")
        dept_a = await seed.area(owner_a, name="Alpha")
        dept_b = await seed.area(owner_b, name="Beta")
        await seed.member(dept_a, user)

        with pytest.raises(Conflict) as exc_info:
            await areas.add_member(ctx, dept_b.uid, user.id, "member", owner_b.id)

        assert exc_info.value.department_name == "Alpha"
        assert exc_info.value.to_dict()["department_name"] == "Alpha"
        assert await seed.members(dept_b) == {}
        assert await seed.permissions(user) == {}

    @pytest.mark.asyncio
    async def test_already_member(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        await seed.member(area, user)

        with pytest.raises(Conflict, match="User is already a member"):
            await areas.add_member(ctx, area.uid, user.id, "member", owner.id)

    @pytest.mark.asyncio
    async def test_plain_member_cannot_add(self, ctx, seed):
        owner = await seed.user("owner")
        member = await seed.user("member")
        user = await seed.user("user")
        area = await seed.area(owner)
        await seed.member(area, member)

        with pytest.raises(Forbidden, match="Not authorized to manage area members"):
            await areas.add_member(ctx, area.uid, user.id, "member", member.id)

    @pytest.mark.asyncio
    async def test_department_admin_can_add(self, ctx, seed):
        owner = await seed.user("owner")
        admin = await seed.user("admin")
        user = await seed.user("user")
        area = await seed.area(owner)
        await seed.member(area, admin, "admin")

        await areas.add_member(ctx, area.uid, user.id, "member", admin.id)
        assert (await seed.members(area))[user.id] == "member"

    @pytest.mark.asyncio
    async def test_validation(self, ctx, seed):
        owner = await seed.user("owner")
        area = await seed.area(owner)
        with pytest.raises(ValidationError, match="user_id is required"):
            await areas.add_member(ctx, area.uid, None, "member", owner.id)
        with pytest.raises(ValidationError, match="Invalid role"):
            await areas.add_member(ctx, area.uid, owner.id, "boss", owner.id)

    @pytest.mark.asyncio
    async def test_unknown_area_and_user(self, ctx, seed):
        owner = await seed.user("owner")
        area = await seed.area(owner)
        with pytest.raises(NotFound):
            await areas.add_member(ctx, "missing", owner.id, "member", owner.id)
        with pytest.raises(NotFound, match="User not found"):
            await areas.add_member(ctx, area.uid, 987654, "member", owner.id)


class TestRemoveMember:
    @pytest.mark.asyncio
    async def test_remove_strips_inherited_rows(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        project = await seed.project(owner, area=area)

        await areas.add_member(ctx, area.uid, user.id, "member", owner.id)
        await areas.remove_member(ctx, area.uid, user.id, owner.id)

        assert await seed.members(area) == {}
        assert await seed.permissions(user) == {}
        assert ("project", project.uid) not in await seed.permissions(user)

    @pytest.mark.asyncio
    async def test_remove_admin_drops_admin_subscription_only(self, ctx, seed):
        owner = await seed.user("owner")
        admin = await seed.user("admin")
        area = await seed.area(owner)
        await areas.add_member(ctx, area.uid, admin.id, "admin", owner.id)

        await areas.remove_member(ctx, area.uid, admin.id, owner.id)
        assert await seed.area_subscribers(area) == {}

    @pytest.mark.asyncio
    async def test_remove_non_member(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        with pytest.raises(NotFound, match="User is not a member of this area"):
            await areas.remove_member(ctx, area.uid, user.id, owner.id)

    @pytest.mark.asyncio
    async def test_admin_can_remove_themselves(self, ctx, seed):
        owner = await seed.user("owner")
        admin = await seed.user("admin")
        area = await seed.area(owner)
        await areas.add_member(ctx, area.uid, admin.id, "admin", owner.id)

        await areas.remove_member(ctx, area.uid, admin.id, admin.id)
        assert await seed.members(area) == {}


class TestOwnershipTransfer:
    """Super-admin SA removes department owner A1."""

    @pytest.mark.asyncio
    async def test_super_admin_removing_owner_transfers_department(self, ctx, seed):
        a1 = await seed.user("a1")
        sa = await seed.user("sa", admin=True)
        dept = await seed.area(a1, name="Dept")
        await seed.member(dept, a1, "admin")
        await seed.area_subscriber(dept, a1, "admin_role")
        await seed.permission(a1, "area", dept.uid, "admin", "area_membership")

        await areas.remove_member(ctx, dept.uid, a1.id, sa.id)

        assert await seed.area_owner(dept) == sa.id
        assert a1.id not in await seed.members(dept)
        assert await seed.area_subscribers(dept) == {}
        assert ("area", dept.uid) not in await seed.permissions(a1)

        verb, uid, target, details = (await seed.actions())[-1]
        assert verb == "area_ownership_transfer"
        assert uid == dept.uid
        assert target == a1.id
        assert details["reason"] == "admin_removal"
        assert details["old_owner_email"].startswith("a1")

    @pytest.mark.asyncio
    async def test_department_admin_cannot_remove_owner(self, ctx, seed):
        owner = await seed.user("owner")
        admin = await seed.user("admin")
        area = await seed.area(owner)
        await seed.member(area, admin, "admin")

        with pytest.raises(Forbidden):
            await areas.remove_member(ctx, area.uid, owner.id, admin.id)
        assert await seed.area_owner(area) == owner.id


class TestUpdateRole:
    @pytest.mark.asyncio
    async def test_promotion_regrants_admin_and_subscribes(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        project = await seed.project(owner, area=area)
        await areas.add_member(ctx, area.uid, user.id, "member", owner.id)

        members = await areas.update_role(ctx, area.uid, user.id, "admin", owner.id)

        assert members[0].role.value == "admin"
        rows = await seed.permissions(user)
        assert rows[("area", area.uid)] == ("admin", "area_membership")
        assert rows[("project", project.uid)] == ("admin", "inherited")
        assert await seed.area_subscribers(area) == {user.id: "admin_role"}

    @pytest.mark.asyncio
    async def test_promotion_keeps_existing_manual_subscription(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        await seed.member(area, user)
        await seed.area_subscriber(area, user, "manual")

        await areas.update_role(ctx, area.uid, user.id, "admin", owner.id)
        assert await seed.area_subscribers(area) == {user.id: "manual"}

    @pytest.mark.asyncio
    async def test_demotion_removes_admin_role_subscription(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        await areas.add_member(ctx, area.uid, user.id, "admin", owner.id)

        await areas.update_role(ctx, area.uid, user.id, "member", owner.id)

        assert await seed.area_subscribers(area) == {}
        assert (await seed.permissions(user))[("area", area.uid)] == ("rw", "area_membership")

    @pytest.mark.asyncio
    async def test_demotion_keeps_manual_subscription(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        await seed.member(area, user, "admin")
        await seed.area_subscriber(area, user, "manual")

        await areas.update_role(ctx, area.uid, user.id, "member", owner.id)
        assert await seed.area_subscribers(area) == {user.id: "manual"}

    @pytest.mark.asyncio
    async def test_invalid_role(self, ctx, seed):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        await seed.member(area, user)
        with pytest.raises(ValidationError, match='Must be "member" or "admin"'):
            await areas.update_role(ctx, area.uid, user.id, None, owner.id)


class TestQueries:
    @pytest.mark.asyncio
    async def test_can_manage_members(self, ctx, seed):
        owner = await seed.user("owner")
        admin = await seed.user("admin")
        member = await seed.user("member")
        root = await seed.user("root", admin=True)
        area = await seed.area(owner)
        await seed.member(area, admin, "admin")
        await seed.member(area, member)

        assert await areas.can_manage_members(ctx, area.uid, owner.id)
        assert await areas.can_manage_members(ctx, area.uid, admin.id)
        assert await areas.can_manage_members(ctx, area.uid, root.id)
        assert not await areas.can_manage_members(ctx, area.uid, member.id)
        assert not await areas.can_manage_members(ctx, "missing", owner.id)


class TestNotifierOutage:
    """Membership writes commit even when the notification backend is down."""

    @staticmethod
    async def _committed(session_factory, area, user):
        async with session_factory() as other:
            role = (
                await other.execute(
                    select(AreaMember.role).where(AreaMember.area_id == area.id, AreaMember.user_id == user.id)
                )
            ).scalar_one_or_none()
            rows = (
                await other.execute(
                    select(Permission.resource_type, Permission.access_level).where(Permission.user_id == user.id)
                )
            ).all()
        return role, {(r.resource_type, r.access_level) for r in rows}

    @pytest.mark.asyncio
    async def test_membership_changes_survive_failing_notifier(self, ctx, seed, notifier, session_factory):
        owner = await seed.user("owner")
        user = await seed.user("user")
        area = await seed.area(owner)
        project = await seed.project(owner, area=area)
        await seed.task(owner, project=project)
        notifier.fail = True

        await areas.add_member(ctx, area.uid, user.id, "member", owner.id)
        assert await self._committed(session_factory, area, user) == (
            "member",
            {("area", "rw"), ("project", "rw"), ("task", "rw")},
        )

        await areas.update_role(ctx, area.uid, user.id, "admin", owner.id)
        assert await self._committed(session_factory, area, user) == (
            "admin",
            {("area", "admin"), ("project", "admin"), ("task", "admin")},
        )

        await areas.remove_member(ctx, area.uid, user.id, owner.id)
        assert await self._committed(session_factory, area, user) == (None, set())
        assert notifier.events == []
