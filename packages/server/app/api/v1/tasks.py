"""Task endpoints: subscribers and assignee."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from app.core.auth import AuthenticatedUser, get_current_user
from app.services import task_assignment, task_subscriptions
from app.services.access import require_access

from taskgate_shared.schemas.common import AccessLevel, ResourceType
from taskgate_shared.schemas.tasks import (
    TaskAssigneeSet,
    TaskAssignmentRead,
    TaskSubscriberAdd,
    TaskSubscriberListResponse,
)

router = APIRouter()


@router.get("/{task_uid}/subscribers", response_model=TaskSubscriberListResponse)
async def list_task_subscribers(
    task_uid: str,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    await require_access(
        auth.ctx, auth.principal, ResourceType.TASK, task_uid, AccessLevel.RO, not_found_message="Task not found"
    )
    subscribers = await task_subscriptions.get_task_subscribers(auth.ctx, task_uid)
    return TaskSubscriberListResponse(subscribers=subscribers)


@router.post("/{task_uid}/subscribers", response_model=TaskSubscriberListResponse, status_code=status.HTTP_201_CREATED)
async def subscribe(
    task_uid: str,
    body: TaskSubscriberAdd,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    subscribers = await task_subscriptions.subscribe_to_task(auth.ctx, task_uid, body.user_id, auth.principal)
    return TaskSubscriberListResponse(subscribers=subscribers)


@router.delete("/{task_uid}/subscribers/{user_id}", response_model=TaskSubscriberListResponse)
async def unsubscribe(
    task_uid: str,
    user_id: int,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    subscribers = await task_subscriptions.unsubscribe_from_task(auth.ctx, task_uid, user_id, auth.principal)
    return TaskSubscriberListResponse(subscribers=subscribers)


@router.put("/{task_uid}/assignee", response_model=TaskAssignmentRead)
async def set_assignee(
    task_uid: str,
    body: TaskAssigneeSet,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    return await task_assignment.assign_task(auth.ctx, task_uid, body.user_id, auth.principal)


@router.delete("/{task_uid}/assignee", response_model=TaskAssignmentRead)
async def clear_assignee(
    task_uid: str,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    return await task_assignment.unassign_task(auth.ctx, task_uid, auth.principal)
