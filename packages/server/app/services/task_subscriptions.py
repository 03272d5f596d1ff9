"""
Task subscriptions.

Subscribing a user records a ``TaskSubscriber`` row, an Action, and, unless
the user already holds a Permission row on the task, a ``subscription``
row at ``rw`` capped by the actor's own level. Unsubscribing removes only
that subscription-sourced row.

New tasks created by department members are auto-subscribed by the
department admins; that side effect never fails task creation.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import delete
from sqlmodel import select

from app.core.errors import Conflict, Forbidden, NotFound, ValidationError
from app.models.permission import Permission
from app.models.task_subscriber import TaskSubscriber
from app.models.user import User
from app.services.access import resolve_access
from app.services.actions import record_action
from app.services.context import OperationContext
from app.services.identity import UserRef
from app.services.notifications import safe_notify
from app.services.store import ResourceOwner

from taskgate_shared.schemas.common import AccessLevel, Propagation, ResourceType, Verb
from taskgate_shared.schemas.tasks import TaskSubscriberRead

log = structlog.get_logger()


async def _get_task(ctx: OperationContext, task_uid: str, *, lock: bool = False) -> ResourceOwner:
    task = await ctx.store.find_owner(ResourceType.TASK, task_uid, lock=lock)
    if task is None:
        raise NotFound("Task not found")
    return task


async def get_task_subscribers(ctx: OperationContext, task_uid: str) -> list[TaskSubscriberRead]:
    task = await _get_task(ctx, task_uid)
    result = await ctx.session.execute(
        select(User)
        .join(TaskSubscriber, TaskSubscriber.user_id == User.id)
        .where(TaskSubscriber.task_id == task.id)
        .order_by(TaskSubscriber.created_at, User.id)
    )
    return [
        TaskSubscriberRead(user_id=u.id, uid=u.uid, email=u.email, name=u.name)
        for u in result.scalars().all()
    ]


async def subscribe_to_task(
    ctx: OperationContext, task_uid: str, user_id: Optional[int], actor_ref: UserRef
) -> list[TaskSubscriberRead]:
    """Subscribe ``user_id`` to a task.

    Readers may subscribe themselves; subscribing anyone else takes ``rw``.
    The subscription Permission row never ranks above the actor's own level.
    """
    if user_id is None:
        raise ValidationError("user_id is required")

    async with ctx.store.transaction():
        task = await _get_task(ctx, task_uid, lock=True)
        actor = await ctx.principal(actor_ref)
        actor_level = await resolve_access(ctx, actor, ResourceType.TASK, task.uid)
        if not actor_level.at_least(AccessLevel.RO):
            raise Forbidden()
        if actor.id != user_id and not actor_level.at_least(AccessLevel.RW):
            log.info(
                "access.denied",
                resource_type=ResourceType.TASK.value,
                resource_uid=task.uid,
                actor_id=actor.id,
                target_user_id=user_id,
            )
            raise Forbidden("Not authorized to subscribe other users")

        user = await ctx.store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        if await ctx.store.is_task_subscriber(task.id, user_id):
            raise Conflict("User already subscribed")

        level = min(AccessLevel.RW, actor_level)
        action = await record_action(
            ctx.session,
            verb=Verb.TASK_SUBSCRIBE,
            actor_user_id=actor.id,
            resource_type=ResourceType.TASK,
            resource_uid=task.uid,
            target_user_id=user_id,
            access_level=level.value,
        )
        ctx.session.add(TaskSubscriber(task_id=task.id, user_id=user_id))
        if await ctx.store.get_permission(user_id, ResourceType.TASK, task.uid) is None:
            ctx.session.add(
                Permission(
                    user_id=user_id,
                    resource_type=ResourceType.TASK.value,
                    resource_uid=task.uid,
                    access_level=level.value,
                    propagation=Propagation.SUBSCRIPTION.value,
                    granted_by_user_id=actor.id,
                    source_action_id=action.id,
                )
            )
        await ctx.session.flush()

    ctx.invalidate()
    log.info("task.subscribed", task_id=task.id, user_id=user_id, actor_id=actor.id, level=level.value)
    return await get_task_subscribers(ctx, task_uid)


async def unsubscribe_from_task(
    ctx: OperationContext, task_uid: str, user_id: int, actor_ref: UserRef
) -> list[TaskSubscriberRead]:
    async with ctx.store.transaction():
        task = await _get_task(ctx, task_uid, lock=True)
        actor = await ctx.principal(actor_ref)
        if actor.id != user_id:
            level = await resolve_access(ctx, actor, ResourceType.TASK, task.uid)
            if not level.at_least(AccessLevel.RW):
                raise Forbidden("Not authorized to unsubscribe this user")

        subscriber = await ctx.session.get(TaskSubscriber, (task.id, user_id))
        if subscriber is None:
            raise NotFound("User is not subscribed")

        await record_action(
            ctx.session,
            verb=Verb.TASK_UNSUBSCRIBE,
            actor_user_id=actor.id,
            resource_type=ResourceType.TASK,
            resource_uid=task.uid,
            target_user_id=user_id,
        )
        await ctx.session.delete(subscriber)
        await ctx.session.execute(
            delete(Permission)
            .where(
                Permission.user_id == user_id,
                Permission.resource_type == ResourceType.TASK.value,
                Permission.resource_uid == task.uid,
                Permission.propagation == Propagation.SUBSCRIPTION.value,
            )
            .execution_options(synchronize_session="fetch")
        )
        await ctx.session.flush()

    ctx.invalidate()
    log.info("task.unsubscribed", task_id=task.id, user_id=user_id, actor_id=actor.id)
    return await get_task_subscribers(ctx, task_uid)


async def subscribe_department_admins(ctx: OperationContext, task_uid: str) -> list[int]:
    """Subscribe the admins of the task owner's department; returns the new subscriber ids."""
    task = await _get_task(ctx, task_uid)
    membership = await ctx.store.membership_for_user(task.owner_id)
    if membership is None:
        return []
    _, area = membership

    added: list[int] = []
    for admin_id in await ctx.store.list_admins(area.id):
        if admin_id == task.owner_id:
            continue
        if await ctx.store.is_task_subscriber(task.id, admin_id):
            continue
        ctx.session.add(TaskSubscriber(task_id=task.id, user_id=admin_id))
        added.append(admin_id)
    await ctx.session.flush()
    return added


async def on_task_created(ctx: OperationContext, task_uid: str) -> list[int]:
    """Post-creation hook: auto-subscribe department admins, then notify them.

    Failures here are logged and swallowed; the task itself is already saved.
    """
    try:
        async with ctx.store.transaction():
            added = await subscribe_department_admins(ctx, task_uid)
    except Exception as exc:
        log.warning("task.auto_subscribe_failed", task_uid=task_uid, error=str(exc))
        return []

    ctx.invalidate()
    if added:
        log.info("task.admins_subscribed", task_uid=task_uid, admin_ids=added)
        await safe_notify(ctx.notifier, "task.created", {"task_uid": task_uid, "subscriber_ids": added})
    return added
