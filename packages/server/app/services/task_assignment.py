"""Task assignment: one assignee per task, backed by an ``assignment`` Permission row.

Every assignment change is recorded as an Action; the assignment row points at it.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import delete
from sqlmodel import select

from app.core.errors import NotFound, ValidationError
from app.models.permission import Permission
from app.models.task import Task
from app.services.access import require_access
from app.services.actions import record_action
from app.services.context import OperationContext
from app.services.identity import UserRef
from app.services.notifications import safe_notify

from taskgate_shared.schemas.common import AccessLevel, Propagation, ResourceType, Verb
from taskgate_shared.schemas.tasks import TaskAssignmentRead

log = structlog.get_logger()


async def _drop_assignment_permission(ctx: OperationContext, task_uid: str, user_id: int) -> None:
    await ctx.session.execute(
        delete(Permission)
        .where(
            Permission.user_id == user_id,
            Permission.resource_type == ResourceType.TASK.value,
            Permission.resource_uid == task_uid,
            Permission.propagation == Propagation.ASSIGNMENT.value,
        )
        .execution_options(synchronize_session="fetch")
    )


async def assign_task(
    ctx: OperationContext, task_uid: str, user_id: Optional[int], actor_ref: UserRef
) -> TaskAssignmentRead:
    if user_id is None:
        raise ValidationError("user_id is required")

    async with ctx.store.transaction():
        task = await ctx.store.get_by_uid(Task, task_uid, lock=True)
        if task is None:
            raise NotFound("Task not found")
        actor = await ctx.principal(actor_ref)
        await require_access(
            ctx,
            actor,
            ResourceType.TASK,
            task_uid,
            AccessLevel.RW,
            forbidden_message="Not authorized to assign this task",
        )
        assignee = await ctx.store.get_user(user_id)
        if assignee is None:
            raise NotFound("User not found")

        action = await record_action(
            ctx.session,
            verb=Verb.TASK_ASSIGN,
            actor_user_id=actor.id,
            resource_type=ResourceType.TASK,
            resource_uid=task.uid,
            target_user_id=user_id,
            access_level=AccessLevel.RW.value,
            details={"previous_assignee_id": task.assigned_to_user_id},
        )

        previous = task.assigned_to_user_id
        if previous is not None and previous != user_id:
            await _drop_assignment_permission(ctx, task.uid, previous)

        task.assigned_to_user_id = user_id
        ctx.session.add(task)

        result = await ctx.session.execute(
            select(Permission).where(
                Permission.user_id == user_id,
                Permission.resource_type == ResourceType.TASK.value,
                Permission.resource_uid == task.uid,
            )
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            permission = Permission(
                user_id=user_id,
                resource_type=ResourceType.TASK.value,
                resource_uid=task.uid,
            )
        permission.access_level = AccessLevel.RW.value
        permission.propagation = Propagation.ASSIGNMENT.value
        permission.granted_by_user_id = actor.id
        permission.source_action_id = action.id
        ctx.session.add(permission)
        await ctx.session.flush()

    ctx.invalidate()
    log.info("task.assigned", task_id=task.id, assignee_id=user_id, previous_assignee_id=previous, actor_id=actor.id)
    if user_id != actor.id:
        await safe_notify(
            ctx.notifier,
            "task.assigned",
            {"task_uid": task.uid, "task_name": task.name, "assignee_id": user_id, "assigned_by": actor.id},
        )
    return TaskAssignmentRead(task_uid=task.uid, assigned_to_user_id=user_id)


async def unassign_task(ctx: OperationContext, task_uid: str, actor_ref: UserRef) -> TaskAssignmentRead:
    async with ctx.store.transaction():
        task = await ctx.store.get_by_uid(Task, task_uid, lock=True)
        if task is None:
            raise NotFound("Task not found")
        actor = await ctx.principal(actor_ref)
        await require_access(
            ctx,
            actor,
            ResourceType.TASK,
            task_uid,
            AccessLevel.RW,
            forbidden_message="Not authorized to assign this task",
        )

        previous = task.assigned_to_user_id
        if previous is not None:
            await record_action(
                ctx.session,
                verb=Verb.TASK_UNASSIGN,
                actor_user_id=actor.id,
                resource_type=ResourceType.TASK,
                resource_uid=task.uid,
                target_user_id=previous,
            )
            await _drop_assignment_permission(ctx, task.uid, previous)
            task.assigned_to_user_id = None
            ctx.session.add(task)
            await ctx.session.flush()

    ctx.invalidate()
    log.info("task.unassigned", task_id=task.id, previous_assignee_id=previous, actor_id=actor.id)
    return TaskAssignmentRead(task_uid=task.uid, assigned_to_user_id=None)
