"""
Access resolution.

Answers "what can this user do to this resource?" with one of
``none < ro < rw < admin``. Rules are tried in order and the first that
matches wins:

1. super-admins get rw on tasks and admin on everything else
2. the owner gets rw (admin for departments)
3. the assignee of a task gets rw
4. a department admin gets ro on tasks owned by their members
5. tasks and notes inherit whatever the caller has on their project
6. department membership gives rw, or admin for the admin role
7. otherwise an explicit Permission row decides

Task subscribers without any Permission row still get ro.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import structlog

from app.core.errors import Forbidden, NotFound, ValidationError
from app.services.context import OperationContext
from app.services.identity import Principal, UserRef
from app.services.store import ResourceOwner

from taskgate_shared.schemas.common import AccessLevel, AreaRole, ResourceType, role_access_level

log = structlog.get_logger()

Rule = Callable[[Principal, ResourceOwner], Awaitable[Optional[AccessLevel]]]


def parse_resource_type(value: ResourceType | str) -> ResourceType:
    try:
        return ResourceType(value)
    except ValueError:
        raise ValidationError(f"Unknown resource type: {value}")


class AccessResolver:
    def __init__(self, ctx: OperationContext):
        self.ctx = ctx
        self.store = ctx.store
        self._rules: dict[ResourceType, Rule] = {
            ResourceType.PROJECT: self._project_rule,
            ResourceType.TASK: self._task_rule,
            ResourceType.NOTE: self._note_rule,
            ResourceType.AREA: self._area_rule,
        }

    async def resolve(self, user_ref: UserRef, resource_type: ResourceType | str, uid: str) -> AccessLevel:
        resource_type = parse_resource_type(resource_type)
        principal = await self.ctx.identity.principal(user_ref)
        if principal is None:
            return AccessLevel.NONE

        resource = await self.store.find_owner(resource_type, uid)
        if resource is None:
            return AccessLevel.NONE

        if principal.is_super_admin:
            return AccessLevel.RW if resource_type is ResourceType.TASK else AccessLevel.ADMIN

        return await self.resolve_resource(principal, resource)

    async def resolve_resource(self, principal: Principal, resource: ResourceOwner) -> AccessLevel:
        """Apply the per-type rules, then the explicit Permission row."""
        level = await self._rules[resource.resource_type](principal, resource)
        if level is not None:
            return level

        permission = await self.store.get_permission(principal.id, resource.resource_type, resource.uid)
        if permission is not None:
            return AccessLevel(permission.access_level)

        if resource.resource_type is ResourceType.TASK and await self.store.is_task_subscriber(
            resource.id, principal.id
        ):
            return AccessLevel.RO

        return AccessLevel.NONE

    # ------------------------------------------------------------------
    # Department facts, cached per operation
    # ------------------------------------------------------------------

    async def administered_area_ids(self, principal: Principal) -> list[int]:
        return await self.ctx.cached(
            ("administered_areas", principal.id),
            lambda: self.store.administered_area_ids(principal.id),
        )

    async def administered_member_ids(self, principal: Principal) -> list[int]:
        area_ids = await self.administered_area_ids(principal)
        return await self.ctx.cached(
            ("administered_members", principal.id),
            lambda: self.store.department_member_ids(area_ids),
        )

    # ------------------------------------------------------------------
    # Per-type rules
    # ------------------------------------------------------------------

    async def _project_rule(self, principal: Principal, project: ResourceOwner) -> Optional[AccessLevel]:
        if project.owner_id == principal.id:
            return AccessLevel.RW
        if project.area_id is not None and project.area_id in await self.administered_area_ids(principal):
            return AccessLevel.RW

        involved = {principal.id, *await self.administered_member_ids(principal)}
        if await self.store.project_has_task_for(project.id, sorted(involved)):
            return AccessLevel.RW
        return None

    async def _task_rule(self, principal: Principal, task: ResourceOwner) -> Optional[AccessLevel]:
        if task.owner_id == principal.id:
            return AccessLevel.RW
        if task.assigned_to_user_id == principal.id:
            return AccessLevel.RW
        if task.owner_id in await self.administered_member_ids(principal):
            return AccessLevel.RO
        return await self._via_project(principal, task)

    async def _note_rule(self, principal: Principal, note: ResourceOwner) -> Optional[AccessLevel]:
        if note.owner_id == principal.id:
            return AccessLevel.RW
        return await self._via_project(principal, note)

    async def _area_rule(self, principal: Principal, area: ResourceOwner) -> Optional[AccessLevel]:
        if area.owner_id == principal.id:
            return AccessLevel.ADMIN
        membership = await self.store.find_membership(area.id, principal.id)
        if membership is not None:
            return role_access_level(AreaRole(membership.role))
        return None

    async def _via_project(self, principal: Principal, child: ResourceOwner) -> Optional[AccessLevel]:
        if child.project_id is None:
            return None
        project_uid = await self.store.project_uid(child.project_id)
        if project_uid is None:
            return None
        project = await self.store.find_owner(ResourceType.PROJECT, project_uid)
        if project is None:
            return None
        level = await self.resolve_resource(principal, project)
        return level if level is not AccessLevel.NONE else None


# ---------------------------------------------------------------------------
# Module-level helpers used by services and routes
# ---------------------------------------------------------------------------

async def resolve_access(
    ctx: OperationContext, user_ref: UserRef, resource_type: ResourceType | str, uid: str
) -> AccessLevel:
    return await AccessResolver(ctx).resolve(user_ref, resource_type, uid)


async def require_access(
    ctx: OperationContext,
    user_ref: UserRef,
    resource_type: ResourceType | str,
    uid: str,
    required: AccessLevel,
    *,
    not_found_message: Optional[str] = None,
    forbidden_message: Optional[str] = None,
) -> ResourceOwner:
    """Raise NotFound or Forbidden unless the caller holds at least ``required``."""
    resource_type = parse_resource_type(resource_type)
    resource = await ctx.store.find_owner(resource_type, uid)
    if resource is None:
        raise NotFound(not_found_message)

    level = await resolve_access(ctx, user_ref, resource_type, uid)
    if not level.at_least(required):
        log.info(
            "access.denied",
            resource_type=resource_type.value,
            resource_uid=uid,
            required=AccessLevel(required).value,
            actual=level.value,
        )
        raise Forbidden(forbidden_message)
    return resource


async def can_manage_area_members(ctx: OperationContext, principal: Principal, area: ResourceOwner) -> bool:
    """Super-admins, the department owner and department admins manage members."""
    if principal.is_super_admin or area.owner_id == principal.id:
        return True
    membership = await ctx.store.find_membership(area.id, principal.id)
    return membership is not None and membership.role == AreaRole.ADMIN.value
