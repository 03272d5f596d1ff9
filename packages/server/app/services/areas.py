"""
Department membership: add, remove and re-role members.

Each mutation writes the membership row, keeps admin subscriber rows in
step with the role and fires the matching area action, all inside one
transaction. A user belongs to at most one department.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import delete
from sqlmodel import select

from app.core.errors import Conflict, Forbidden, NotFound, ValidationError
from app.models.area import Area
from app.models.area_member import AreaMember
from app.models.permission import Permission
from app.models.user import User
from app.services.access import can_manage_area_members
from app.services.actions import execute_action, record_action
from app.services.area_subscribers import drop_admin_subscription, ensure_admin_subscription
from app.services.context import OperationContext
from app.services.identity import Principal, UserRef
from app.services.notifications import safe_notify
from app.services.store import ResourceOwner

from taskgate_shared.schemas.areas import MemberRead
from taskgate_shared.schemas.common import (
    AreaRole,
    Propagation,
    ResourceType,
    Verb,
    role_access_level,
)
from taskgate_shared.schemas.permissions import ActionRequest

log = structlog.get_logger()

INVALID_ROLE_MESSAGE = 'Invalid role. Must be "member" or "admin"'


def parse_role(role: Optional[str], *, default: Optional[AreaRole] = None) -> AreaRole:
    if role is None and default is not None:
        return default
    try:
        return AreaRole(role)
    except ValueError:
        raise ValidationError(INVALID_ROLE_MESSAGE)


async def can_manage_members(ctx: OperationContext, area_uid: str, actor_ref: UserRef) -> bool:
    area = await ctx.store.find_owner(ResourceType.AREA, area_uid)
    if area is None:
        return False
    actor = await ctx.identity.principal(actor_ref)
    if actor is None:
        return False
    return await can_manage_area_members(ctx, actor, area)


async def _load_managed_area(
    ctx: OperationContext, area_uid: str, actor_ref: UserRef
) -> tuple[Area, ResourceOwner, Principal]:
    # the row lock serializes concurrent membership changes and owner transfers
    area = await ctx.store.get_by_uid(Area, area_uid, lock=True)
    if area is None:
        raise NotFound("Area not found")
    owner = await ctx.store.find_owner(ResourceType.AREA, area_uid)
    actor = await ctx.principal(actor_ref)
    if not await can_manage_area_members(ctx, actor, owner):
        raise Forbidden("Not authorized to manage area members")
    return area, owner, actor


async def get_members(ctx: OperationContext, area_uid: str) -> list[MemberRead]:
    area = await ctx.store.find_owner(ResourceType.AREA, area_uid)
    if area is None:
        raise NotFound("Area not found")
    result = await ctx.session.execute(
        select(AreaMember, User)
        .join(User, User.id == AreaMember.user_id)
        .where(AreaMember.area_id == area.id)
        .order_by(AreaMember.created_at, AreaMember.user_id)
    )
    return [
        MemberRead(
            user_id=user.id,
            uid=user.uid,
            email=user.email,
            name=user.name,
            role=AreaRole(member.role),
            joined_at=member.created_at,
        )
        for member, user in result.all()
    ]


async def add_member(
    ctx: OperationContext,
    area_uid: str,
    user_id: Optional[int],
    role: Optional[str],
    actor_ref: UserRef,
) -> list[MemberRead]:
    """Add a user to a department and cascade the role's access to its content."""
    if user_id is None:
        raise ValidationError("user_id is required")
    area_role = parse_role(role, default=AreaRole.MEMBER)

    async with ctx.store.transaction():
        area, _, actor = await _load_managed_area(ctx, area_uid, actor_ref)

        user = await ctx.store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")

        existing = await ctx.store.membership_for_user(user_id)
        if existing is not None:
            _, other_area = existing
            if other_area.id == area.id:
                raise Conflict("User is already a member")
            raise Conflict(
                "User is already a member of another department",
                department_name=other_area.name,
            )

        ctx.session.add(AreaMember(area_id=area.id, user_id=user_id, role=area_role.value))
        await ctx.session.flush()

        if area_role is AreaRole.ADMIN:
            await ensure_admin_subscription(ctx, area.id, user_id, added_by=actor.id)

        await execute_action(
            ctx,
            ActionRequest(
                verb=Verb.AREA_MEMBER_ADD,
                actor_user_id=actor.id,
                target_user_id=user_id,
                resource_type=ResourceType.AREA.value,
                resource_uid=area.uid,
                access_level=role_access_level(area_role),
            ),
        )

    log.info("area.member_added", area_id=area.id, user_id=user_id, role=area_role.value, actor_id=actor.id)
    await safe_notify(
        ctx.notifier,
        "area.member_added",
        {"area_uid": area.uid, "user_id": user_id, "role": area_role.value, "added_by": actor.id},
    )
    return await get_members(ctx, area_uid)


async def _transfer_ownership(ctx: OperationContext, area: Area, actor: Principal) -> None:
    """Hand the department to the acting super-admin and strip the old owner."""
    old_owner = await ctx.store.get_user(area.user_id)
    new_owner = await ctx.store.get_user(actor.id)
    old_owner_id = area.user_id

    area.user_id = actor.id
    ctx.session.add(area)

    await ctx.session.execute(
        delete(AreaMember)
        .where(AreaMember.area_id == area.id, AreaMember.user_id == old_owner_id)
        .execution_options(synchronize_session="fetch")
    )
    await drop_admin_subscription(ctx, area.id, old_owner_id)

    await record_action(
        ctx.session,
        verb=Verb.AREA_OWNERSHIP_TRANSFER,
        actor_user_id=actor.id,
        resource_type=ResourceType.AREA,
        resource_uid=area.uid,
        target_user_id=old_owner_id,
        details={
            "old_owner_email": old_owner.email if old_owner else None,
            "new_owner_email": new_owner.email if new_owner else None,
            "reason": "admin_removal",
        },
    )

    await ctx.session.execute(
        delete(Permission)
        .where(
            Permission.user_id == old_owner_id,
            Permission.resource_type == ResourceType.AREA.value,
            Permission.resource_uid == area.uid,
            Permission.propagation == Propagation.AREA_MEMBERSHIP.value,
        )
        .execution_options(synchronize_session="fetch")
    )
    await ctx.session.flush()

    log.warning(
        "area.ownership_transferred",
        area_id=area.id,
        old_owner_id=old_owner_id,
        new_owner_id=actor.id,
    )


async def remove_member(
    ctx: OperationContext, area_uid: str, user_id: int, actor_ref: UserRef
) -> list[MemberRead]:
    """Remove a member; removing the owner transfers the department to the super-admin."""
    transferred = False
    async with ctx.store.transaction():
        area, _, actor = await _load_managed_area(ctx, area_uid, actor_ref)

        if user_id == area.user_id:
            if not actor.is_super_admin:
                raise Forbidden("Only administrators can remove the area owner")
            if actor.id == user_id:
                raise ValidationError("Cannot remove area owner from members")
            await _transfer_ownership(ctx, area, actor)
            transferred = True
        else:
            membership = await ctx.store.find_membership(area.id, user_id)
            if membership is None:
                raise NotFound("User is not a member of this area")
            role = AreaRole(membership.role)

            # cascade first: an admin removing themselves is still authorized here
            await execute_action(
                ctx,
                ActionRequest(
                    verb=Verb.AREA_MEMBER_REMOVE,
                    actor_user_id=actor.id,
                    target_user_id=user_id,
                    resource_type=ResourceType.AREA.value,
                    resource_uid=area.uid,
                ),
            )

            await ctx.session.delete(membership)
            await ctx.session.flush()
            if role is AreaRole.ADMIN:
                await drop_admin_subscription(ctx, area.id, user_id)

    ctx.invalidate()
    log.info("area.member_removed", area_id=area.id, user_id=user_id, actor_id=actor.id, transferred=transferred)
    await safe_notify(
        ctx.notifier,
        "area.member_removed",
        {"area_uid": area.uid, "user_id": user_id, "removed_by": actor.id, "ownership_transferred": transferred},
    )
    return await get_members(ctx, area_uid)


async def update_role(
    ctx: OperationContext, area_uid: str, user_id: int, role: Optional[str], actor_ref: UserRef
) -> list[MemberRead]:
    """Change a member's role, re-cascading access and syncing admin subscriptions."""
    area_role = parse_role(role)

    async with ctx.store.transaction():
        area, _, actor = await _load_managed_area(ctx, area_uid, actor_ref)

        membership = await ctx.store.find_membership(area.id, user_id)
        if membership is None:
            raise NotFound("User is not a member of this area")

        previous = AreaRole(membership.role)
        membership.role = area_role.value
        ctx.session.add(membership)
        await ctx.session.flush()

        if area_role is AreaRole.ADMIN:
            await ensure_admin_subscription(ctx, area.id, user_id, added_by=actor.id)
        else:
            await drop_admin_subscription(ctx, area.id, user_id)

        await execute_action(
            ctx,
            ActionRequest(
                verb=Verb.AREA_MEMBER_ROLE_UPDATE,
                actor_user_id=actor.id,
                target_user_id=user_id,
                resource_type=ResourceType.AREA.value,
                resource_uid=area.uid,
                access_level=role_access_level(area_role),
                metadata={"previous_role": previous.value},
            ),
        )

    log.info(
        "area.member_role_updated",
        area_id=area.id,
        user_id=user_id,
        previous_role=previous.value,
        role=area_role.value,
        actor_id=actor.id,
    )
    await safe_notify(
        ctx.notifier,
        "area.member_role_updated",
        {"area_uid": area.uid, "user_id": user_id, "role": area_role.value},
    )
    return await get_members(ctx, area_uid)
