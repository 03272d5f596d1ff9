"""
Visibility predicates for list queries.

``build_filter`` returns a WHERE-clause for "all rows of this type the user
may see". The conditions mirror the access resolver rule for rule, so a
row matches the predicate exactly when resolving it gives something other
than ``none``. One difference is intentional: super-admins match every
project, task and department, but notes stay scoped to ownership and
sharing even for them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import false, or_, true
from sqlmodel import select

from app.models.area import Area
from app.models.area_member import AreaMember
from app.models.note import Note
from app.models.project import Project
from app.models.task import Task
from app.services.access import AccessResolver, parse_resource_type
from app.services.context import OperationContext
from app.services.identity import Principal, UserRef
from app.services.store import RESOURCE_MODELS

from taskgate_shared.schemas.common import ResourceType

log = structlog.get_logger()


@dataclass
class VisibilityPredicate:
    resource_type: ResourceType
    match_all: bool = False
    conditions: list[Any] = field(default_factory=list)

    @property
    def clause(self):
        if self.match_all:
            return true()
        if not self.conditions:
            return false()
        return or_(*self.conditions)

    def apply(self, stmt):
        return stmt.where(self.clause)


class VisibilityPredicateBuilder:
    def __init__(self, ctx: OperationContext):
        self.ctx = ctx
        self.store = ctx.store
        self.resolver = AccessResolver(ctx)
        self._builders = {
            ResourceType.PROJECT: self._project_conditions,
            ResourceType.TASK: self._task_conditions,
            ResourceType.NOTE: self._note_conditions,
            ResourceType.AREA: self._area_conditions,
        }

    async def build(self, resource_type: ResourceType | str, user_ref: UserRef) -> VisibilityPredicate:
        resource_type = parse_resource_type(resource_type)
        principal = await self.ctx.identity.principal(user_ref)
        if principal is None:
            return VisibilityPredicate(resource_type)

        return await self.ctx.cached(
            ("visibility", resource_type.value, principal.id),
            lambda: self._build(resource_type, principal),
        )

    async def _build(self, resource_type: ResourceType, principal: Principal) -> VisibilityPredicate:
        if principal.is_super_admin and resource_type is not ResourceType.NOTE:
            return VisibilityPredicate(resource_type, match_all=True)
        conditions = await self._builders[resource_type](principal)
        return VisibilityPredicate(resource_type, conditions=conditions)

    # ------------------------------------------------------------------
    # Per-type conditions
    # ------------------------------------------------------------------

    async def _project_conditions(self, principal: Principal) -> list[Any]:
        conditions: list[Any] = [Project.user_id == principal.id]

        shared = await self.store.shared_uids(principal.id, ResourceType.PROJECT)
        if shared:
            conditions.append(Project.uid.in_(shared))

        area_ids = await self.resolver.administered_area_ids(principal)
        if area_ids:
            conditions.append(Project.area_id.in_(area_ids))

        involved = sorted({principal.id, *await self.resolver.administered_member_ids(principal)})
        conditions.append(
            Project.id.in_(
                select(Task.project_id).where(
                    Task.project_id.is_not(None),
                    or_(Task.user_id.in_(involved), Task.assigned_to_user_id.in_(involved)),
                )
            )
        )
        return conditions

    async def _visible_project_ids(self, principal: Principal):
        project_clause = or_(*await self._project_conditions(principal))
        return select(Project.id).where(project_clause)

    async def _task_conditions(self, principal: Principal) -> list[Any]:
        conditions: list[Any] = [
            Task.user_id == principal.id,
            Task.assigned_to_user_id == principal.id,
        ]

        shared = await self.store.shared_uids(principal.id, ResourceType.TASK)
        if shared:
            conditions.append(Task.uid.in_(shared))

        conditions.append(Task.project_id.in_(await self._visible_project_ids(principal)))
        subscribed = await self.store.subscribed_task_ids(principal.id)
        if subscribed:
            conditions.append(Task.id.in_(subscribed))

        member_ids = await self.resolver.administered_member_ids(principal)
        if member_ids:
            conditions.append(Task.user_id.in_(member_ids))
        return conditions

    async def _note_conditions(self, principal: Principal) -> list[Any]:
        conditions: list[Any] = [Note.user_id == principal.id]

        shared = await self.store.shared_uids(principal.id, ResourceType.NOTE)
        if shared:
            conditions.append(Note.uid.in_(shared))

        conditions.append(Note.project_id.in_(await self._visible_project_ids(principal)))
        return conditions

    async def _area_conditions(self, principal: Principal) -> list[Any]:
        conditions: list[Any] = [
            Area.user_id == principal.id,
            Area.id.in_(select(AreaMember.area_id).where(AreaMember.user_id == principal.id)),
        ]

        shared = await self.store.shared_uids(principal.id, ResourceType.AREA)
        if shared:
            conditions.append(Area.uid.in_(shared))
        return conditions


async def build_filter(
    ctx: OperationContext, resource_type: ResourceType | str, user_ref: UserRef
) -> VisibilityPredicate:
    return await VisibilityPredicateBuilder(ctx).build(resource_type, user_ref)


async def list_visible(ctx: OperationContext, resource_type: ResourceType | str, user_ref: UserRef) -> list[str]:
    """UIDs of every row of ``resource_type`` visible to the user."""
    predicate = await build_filter(ctx, resource_type, user_ref)
    model = RESOURCE_MODELS[predicate.resource_type]
    result = await ctx.session.execute(predicate.apply(select(model.uid)).order_by(model.id))
    uids = list(result.scalars().all())
    log.debug("visibility.listed", resource_type=predicate.resource_type.value, count=len(uids))
    return uids
