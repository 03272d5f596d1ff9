"""
Department subscribers.

Subscribers are notified about new work in a department; the rows do not
grant anything. A row is either ``manual`` (added by someone who manages
the department) or ``admin_role`` (kept in step with the admin role). Role
changes only ever touch ``admin_role`` rows, so a manual subscription
survives promotion and demotion.
"""

from __future__ import annotations

import structlog
from sqlalchemy import delete
from sqlmodel import select

from app.core.errors import Conflict, Forbidden, NotFound, ValidationError
from app.models.area_subscriber import AreaSubscriber
from app.models.user import User
from app.services.access import can_manage_area_members
from app.services.context import OperationContext
from app.services.identity import UserRef

from taskgate_shared.schemas.areas import SubscriberRead
from taskgate_shared.schemas.common import ResourceType, SubscriberSource

log = structlog.get_logger()


async def _find(ctx: OperationContext, area_id: int, user_id: int) -> AreaSubscriber | None:
    result = await ctx.session.execute(
        select(AreaSubscriber).where(AreaSubscriber.area_id == area_id, AreaSubscriber.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def ensure_admin_subscription(
    ctx: OperationContext, area_id: int, user_id: int, added_by: int | None = None
) -> AreaSubscriber:
    """Find-or-create; an existing row (manual or not) is left as it is."""
    existing = await _find(ctx, area_id, user_id)
    if existing is not None:
        return existing
    subscriber = AreaSubscriber(
        area_id=area_id,
        user_id=user_id,
        added_by=added_by,
        source=SubscriberSource.ADMIN_ROLE.value,
    )
    ctx.session.add(subscriber)
    await ctx.session.flush()
    log.info("area.subscriber_added", area_id=area_id, user_id=user_id, source=subscriber.source)
    return subscriber


async def drop_admin_subscription(ctx: OperationContext, area_id: int, user_id: int) -> int:
    """Remove the admin_role row only; returns the number of rows deleted."""
    result = await ctx.session.execute(
        delete(AreaSubscriber)
        .where(
            AreaSubscriber.area_id == area_id,
            AreaSubscriber.user_id == user_id,
            AreaSubscriber.source == SubscriberSource.ADMIN_ROLE.value,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount:
        log.info("area.subscriber_removed", area_id=area_id, user_id=user_id, source="admin_role")
    return result.rowcount or 0


async def list_subscribers(ctx: OperationContext, area_uid: str) -> list[SubscriberRead]:
    area = await ctx.store.find_owner(ResourceType.AREA, area_uid)
    if area is None:
        raise NotFound("Area not found")
    result = await ctx.session.execute(
        select(AreaSubscriber, User)
        .join(User, User.id == AreaSubscriber.user_id)
        .where(AreaSubscriber.area_id == area.id)
        .order_by(AreaSubscriber.id)
    )
    return [
        SubscriberRead(
            user_id=user.id,
            uid=user.uid,
            email=user.email,
            name=user.name,
            source=SubscriberSource(sub.source),
            added_by=sub.added_by,
        )
        for sub, user in result.all()
    ]


async def _managed_area(ctx: OperationContext, area_uid: str, actor_ref: UserRef):
    area = await ctx.store.find_owner(ResourceType.AREA, area_uid, lock=True)
    if area is None:
        raise NotFound("Area not found")
    actor = await ctx.principal(actor_ref)
    if not await can_manage_area_members(ctx, actor, area):
        raise Forbidden("Not authorized to manage area subscribers")
    return area, actor


async def add_subscriber(
    ctx: OperationContext, area_uid: str, user_id: int | None, actor_ref: UserRef
) -> SubscriberRead:
    if user_id is None:
        raise ValidationError("user_id is required")

    async with ctx.store.transaction():
        area, actor = await _managed_area(ctx, area_uid, actor_ref)
        user = await ctx.store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        if await _find(ctx, area.id, user_id) is not None:
            raise Conflict("User is already a subscriber")

        subscriber = AreaSubscriber(
            area_id=area.id,
            user_id=user_id,
            added_by=actor.id,
            source=SubscriberSource.MANUAL.value,
        )
        ctx.session.add(subscriber)
        await ctx.session.flush()

    log.info("area.subscriber_added", area_id=area.id, user_id=user_id, source="manual")
    return SubscriberRead(
        user_id=user.id,
        uid=user.uid,
        email=user.email,
        name=user.name,
        source=SubscriberSource.MANUAL,
        added_by=actor.id,
    )


async def remove_subscriber(ctx: OperationContext, area_uid: str, user_id: int, actor_ref: UserRef) -> None:
    async with ctx.store.transaction():
        area, _ = await _managed_area(ctx, area_uid, actor_ref)
        subscriber = await _find(ctx, area.id, user_id)
        if subscriber is None:
            raise NotFound("User is not a subscriber")
        if subscriber.source == SubscriberSource.ADMIN_ROLE.value:
            raise Conflict("Admin subscriptions follow the admin role and cannot be removed directly")
        await ctx.session.delete(subscriber)
        await ctx.session.flush()

    log.info("area.subscriber_removed", area_id=area.id, user_id=user_id, source="manual")

