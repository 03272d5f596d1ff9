"""
Action executor: the single entry point for permission-changing operations.

Each call records an ``Action`` row, computes the cascade and applies it,
all inside one transaction that holds a row lock on the target resource.
Every Permission row written carries the id of the Action that produced it.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import AccessEngineError, Forbidden, InternalError, NotFound, ValidationError
from app.models.action import Action
from app.models.permission import Permission
from app.services.cascade import CascadeCalculator
from app.services.context import OperationContext
from app.services.identity import Principal
from app.services.store import ResourceOwner

from taskgate_shared.schemas.common import (
    AREA_VERBS,
    GRANTABLE_LEVELS,
    SHARE_VERBS,
    AreaRole,
    Propagation,
    ResourceType,
    Verb,
)
from taskgate_shared.schemas.permissions import ActionRequest, PermissionChanges

log = structlog.get_logger()

_SHAREABLE_TYPES = {ResourceType.PROJECT, ResourceType.TASK, ResourceType.NOTE}
_LEVEL_VERBS = {Verb.SHARE_GRANT, Verb.AREA_MEMBER_ADD, Verb.AREA_MEMBER_ROLE_UPDATE}


def validate_request(request: ActionRequest) -> ResourceType:
    try:
        resource_type = ResourceType(request.resource_type)
    except ValueError:
        raise ValidationError(f"Unsupported resource type: {request.resource_type}")

    if request.verb in SHARE_VERBS:
        if resource_type not in _SHAREABLE_TYPES:
            raise ValidationError(f"Cannot share a resource of type {resource_type.value}")
    elif request.verb in AREA_VERBS:
        if resource_type is not ResourceType.AREA:
            raise ValidationError(f"{request.verb.value} applies to areas only")
    else:
        raise ValidationError(f"Unsupported action verb: {request.verb.value}")

    if request.target_user_id is None:
        raise ValidationError("user_id is required")
    if request.verb in _LEVEL_VERBS and request.access_level not in GRANTABLE_LEVELS:
        raise ValidationError("access_level must be one of ro, rw or admin")
    return resource_type


async def authorize_actor(ctx: OperationContext, actor: Optional[Principal], resource: ResourceOwner) -> None:
    """Super-admins and owners may change sharing; department admins may also manage their area."""
    if actor is None:
        raise Forbidden()
    if actor.is_super_admin or resource.owner_id == actor.id:
        return
    if resource.resource_type is ResourceType.AREA:
        membership = await ctx.store.find_membership(resource.id, actor.id)
        if membership is not None and membership.role == AreaRole.ADMIN.value:
            return
    raise Forbidden()


async def record_action(
    session: AsyncSession,
    *,
    verb: Verb,
    actor_user_id: int,
    resource_type: ResourceType | str,
    resource_uid: str,
    target_user_id: Optional[int] = None,
    access_level: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> Action:
    action = Action(
        actor_user_id=actor_user_id,
        verb=Verb(verb).value,
        resource_type=ResourceType(resource_type).value,
        resource_uid=resource_uid,
        target_user_id=target_user_id,
        access_level=access_level,
        details=details,
    )
    session.add(action)
    await session.flush()
    return action


def tag_provenance(changes: PermissionChanges, action_id: int) -> PermissionChanges:
    return PermissionChanges(
        upserts=[row.model_copy(update={"source_action_id": action_id}) for row in changes.upserts],
        deletes=list(changes.deletes),
    )


async def apply_changes(session: AsyncSession, changes: PermissionChanges) -> None:
    """Write a change set: deletes first, then upserts keyed on (user, type, uid).

    An inherited upsert never replaces a row that came from an explicit
    grant, membership, assignment or subscription.
    """
    delete_groups: dict[tuple, list[str]] = defaultdict(list)
    for key in changes.deletes:
        propagations = tuple(sorted(p.value for p in key.propagations)) if key.propagations else None
        delete_groups[(key.user_id, key.resource_type, propagations)].append(key.resource_uid)

    for (user_id, resource_type, propagations), uids in delete_groups.items():
        stmt = delete(Permission).where(
            Permission.user_id == user_id,
            Permission.resource_type == resource_type,
            Permission.resource_uid.in_(uids),
        )
        if propagations is not None:
            stmt = stmt.where(Permission.propagation.in_(propagations))
        await session.execute(stmt.execution_options(synchronize_session="fetch"))

    upsert_groups: dict[tuple, list] = defaultdict(list)
    for row in changes.upserts:
        upsert_groups[(row.user_id, row.resource_type)].append(row)

    for (user_id, resource_type), rows in upsert_groups.items():
        result = await session.execute(
            select(Permission).where(
                Permission.user_id == user_id,
                Permission.resource_type == resource_type,
                Permission.resource_uid.in_([row.resource_uid for row in rows]),
            )
        )
        existing = {perm.resource_uid: perm for perm in result.scalars().all()}

        for row in rows:
            current = existing.get(row.resource_uid)
            if current is None:
                session.add(
                    Permission(
                        user_id=row.user_id,
                        resource_type=row.resource_type,
                        resource_uid=row.resource_uid,
                        access_level=row.access_level.value,
                        propagation=row.propagation.value,
                        granted_by_user_id=row.granted_by_user_id,
                        source_action_id=row.source_action_id,
                    )
                )
                continue
            if row.propagation is Propagation.INHERITED and current.propagation != Propagation.INHERITED.value:
                continue
            current.access_level = row.access_level.value
            current.propagation = row.propagation.value
            current.granted_by_user_id = row.granted_by_user_id
            current.source_action_id = row.source_action_id
            session.add(current)

    await session.flush()


async def _execute_locked(ctx: OperationContext, request: ActionRequest, resource_type: ResourceType) -> int:
    resource = await ctx.store.find_owner(resource_type, request.resource_uid, lock=True)
    if resource is None:
        raise NotFound("Resource not found")

    actor = await ctx.identity.principal(request.actor_user_id)
    await authorize_actor(ctx, actor, resource)

    action = await record_action(
        ctx.session,
        verb=request.verb,
        actor_user_id=actor.id,
        resource_type=resource_type,
        resource_uid=resource.uid,
        target_user_id=request.target_user_id,
        access_level=request.access_level.value if request.access_level else None,
        details=request.metadata,
    )

    changes = await CascadeCalculator(ctx.store).calculate(request.verb, request)
    changes = tag_provenance(changes, action.id)
    await apply_changes(ctx.session, changes)

    log.info(
        "action.executed",
        action_id=action.id,
        verb=request.verb.value,
        resource_type=resource_type.value,
        resource_uid=resource.uid,
        actor_user_id=actor.id,
        target_user_id=request.target_user_id,
        upserts=len(changes.upserts),
        deletes=len(changes.deletes),
    )
    return action.id


async def execute_action(ctx: OperationContext, request: ActionRequest) -> int:
    """Validate, authorize and apply one permission-changing action atomically.

    Returns the id of the recorded Action. Any failure rolls back the
    Action row and every Permission change together.
    """
    resource_type = validate_request(request)
    try:
        async with ctx.store.transaction():
            action_id = await _execute_locked(ctx, request, resource_type)
    except AccessEngineError:
        raise
    except SQLAlchemyError as exc:
        log.error(
            "action.failed",
            verb=request.verb.value,
            resource_type=request.resource_type,
            resource_uid=request.resource_uid,
            error=str(exc),
        )
        raise InternalError("Failed to apply permission changes") from exc
    finally:
        ctx.invalidate()
    return action_id
