"""
Read-side access to resources, memberships and permissions.

Every read the engine makes goes through ``ResourceStore`` so lookup
failures surface uniformly as ``LookupFailed`` instead of leaking driver
exceptions into the resolver or the cascade.
"""

from __future__ import annotations

import functools
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import LookupFailed
from app.models.area import Area
from app.models.area_member import AreaMember
from app.models.note import Note
from app.models.permission import Permission
from app.models.project import Project
from app.models.task import Task
from app.models.task_subscriber import TaskSubscriber
from app.models.user import User
from app.services.task_tree import TaskTree

from taskgate_shared.schemas.common import AccessLevel, AreaRole, Propagation, ResourceType

RESOURCE_MODELS = {
    ResourceType.PROJECT: Project,
    ResourceType.TASK: Task,
    ResourceType.NOTE: Note,
    ResourceType.AREA: Area,
}


@dataclass(frozen=True)
class ResourceOwner:
    """Ownership and placement facts for a single resource."""

    resource_type: ResourceType
    id: int
    uid: str
    owner_id: int
    project_id: Optional[int] = None
    area_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    assigned_to_user_id: Optional[int] = None
    name: Optional[str] = None


def _lookup(fn):
    """Translate storage errors raised by a read into LookupFailed."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            raise LookupFailed(f"Lookup failed in {fn.__name__}") from exc

    return wrapper


class ResourceStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a transaction, or a SAVEPOINT when one is already running."""
        if self.session.in_transaction():
            async with self.session.begin_nested():
                yield self.session
        else:
            async with self.session.begin():
                yield self.session

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    @_lookup
    async def find_owner(
        self, resource_type: ResourceType | str, uid: str, *, lock: bool = False
    ) -> Optional[ResourceOwner]:
        """Load ownership facts for a resource; ``lock`` takes a row lock."""
        resource_type = ResourceType(resource_type)
        model = RESOURCE_MODELS[resource_type]
        stmt = select(model).where(model.uid == uid)
        if lock:
            stmt = stmt.with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return ResourceOwner(
            resource_type=resource_type,
            id=row.id,
            uid=row.uid,
            owner_id=row.user_id,
            project_id=getattr(row, "project_id", None),
            area_id=getattr(row, "area_id", None),
            parent_task_id=getattr(row, "parent_task_id", None),
            assigned_to_user_id=getattr(row, "assigned_to_user_id", None),
            name=getattr(row, "name", None) or getattr(row, "title", None),
        )

    @_lookup
    async def get_by_uid(self, model: Any, uid: str, *, lock: bool = False):
        stmt = select(model).where(model.uid == uid)
        if lock:
            stmt = stmt.with_for_update()
        return (await self.session.execute(stmt)).scalar_one_or_none()

    @_lookup
    async def get_user(self, user_id: int) -> Optional[User]:
        return await self.session.get(User, user_id)

    @_lookup
    async def project_uid(self, project_id: int) -> Optional[str]:
        result = await self.session.execute(select(Project.uid).where(Project.id == project_id))
        return result.scalar_one_or_none()

    @_lookup
    async def task_subtree(self, task_id: int) -> TaskTree:
        return await TaskTree.load(self.session, root_ids=[task_id])

    @_lookup
    async def project_task_tree(self, project_id: int) -> TaskTree:
        return await TaskTree.load(self.session, project_id=project_id)

    async def find_descendant_task_uids(self, root_task_id: int) -> list[str]:
        """UIDs of every task below ``root_task_id``, the root excluded."""
        tree = await self.task_subtree(root_task_id)
        return [node.uid for node in tree.descendants(root_task_id)]

    async def find_project_task_uids(self, project_id: int) -> list[str]:
        """UIDs of the project's tasks and all of their subtasks."""
        tree = await self.project_task_tree(project_id)
        return tree.all_uids()

    @_lookup
    async def find_project_note_uids(self, project_id: int) -> list[str]:
        result = await self.session.execute(select(Note.uid).where(Note.project_id == project_id))
        return list(result.scalars().all())

    @_lookup
    async def task_lineage(self, task_id: int) -> tuple[list[str], Optional[int]]:
        """Ancestor task UIDs nearest first, plus the project the chain sits in."""
        ancestors: list[str] = []
        project_id: Optional[int] = None
        seen = {task_id}
        current: Optional[int] = task_id
        while current is not None:
            row = (
                await self.session.execute(
                    select(Task.uid, Task.parent_task_id, Task.project_id).where(Task.id == current)
                )
            ).first()
            if row is None:
                break
            if current != task_id:
                ancestors.append(row.uid)
            if project_id is None:
                project_id = row.project_id
            current = row.parent_task_id
            if current in seen:
                break
            seen.add(current)
        return ancestors, project_id

    @_lookup
    async def project_placement(self, project_id: int) -> Optional[tuple[str, Optional[int]]]:
        """(uid, area_id) for a project, or None when it is gone."""
        row = (await self.session.execute(select(Project.uid, Project.area_id).where(Project.id == project_id))).first()
        if row is None:
            return None
        return row.uid, row.area_id

    @_lookup
    async def list_area_projects(self, area_id: int) -> list[tuple[int, str]]:
        result = await self.session.execute(
            select(Project.id, Project.uid).where(Project.area_id == area_id).order_by(Project.id)
        )
        return [(row.id, row.uid) for row in result.all()]

    @_lookup
    async def project_has_task_for(self, project_id: int, user_ids: Sequence[int]) -> bool:
        """True when some task in the project is owned by or assigned to one of ``user_ids``."""
        if not user_ids:
            return False
        result = await self.session.execute(
            select(Task.id)
            .where(
                Task.project_id == project_id,
                or_(Task.user_id.in_(user_ids), Task.assigned_to_user_id.in_(user_ids)),
            )
            .limit(1)
        )
        return result.first() is not None

    # ------------------------------------------------------------------
    # Departments
    # ------------------------------------------------------------------

    @_lookup
    async def find_membership(self, area_id: int, user_id: int) -> Optional[AreaMember]:
        return await self.session.get(AreaMember, (area_id, user_id))

    @_lookup
    async def membership_for_user(
        self, user_id: int, *, exclude_area_id: Optional[int] = None
    ) -> Optional[tuple[AreaMember, Area]]:
        stmt = (
            select(AreaMember, Area)
            .join(Area, Area.id == AreaMember.area_id)
            .where(AreaMember.user_id == user_id)
        )
        if exclude_area_id is not None:
            stmt = stmt.where(AreaMember.area_id != exclude_area_id)
        row = (await self.session.execute(stmt.limit(1))).first()
        if row is None:
            return None
        return row[0], row[1]

    @_lookup
    async def list_admins(self, area_id: int) -> list[int]:
        """The department owner plus every member holding the admin role."""
        admin_ids: list[int] = []
        owner = await self.session.execute(select(Area.user_id).where(Area.id == area_id))
        owner_id = owner.scalar_one_or_none()
        if owner_id is not None:
            admin_ids.append(owner_id)
        result = await self.session.execute(
            select(AreaMember.user_id).where(
                AreaMember.area_id == area_id, AreaMember.role == AreaRole.ADMIN.value
            )
        )
        for user_id in result.scalars().all():
            if user_id not in admin_ids:
                admin_ids.append(user_id)
        return admin_ids

    @_lookup
    async def administered_area_ids(self, user_id: int) -> list[int]:
        owned = await self.session.execute(select(Area.id).where(Area.user_id == user_id))
        admin_of = await self.session.execute(
            select(AreaMember.area_id).where(
                AreaMember.user_id == user_id, AreaMember.role == AreaRole.ADMIN.value
            )
        )
        return sorted(set(owned.scalars().all()) | set(admin_of.scalars().all()))

    @_lookup
    async def department_member_ids(self, area_ids: Sequence[int]) -> list[int]:
        """Members and owners of the given departments."""
        if not area_ids:
            return []
        members = await self.session.execute(
            select(AreaMember.user_id).where(AreaMember.area_id.in_(area_ids))
        )
        owners = await self.session.execute(select(Area.user_id).where(Area.id.in_(area_ids)))
        return sorted(set(members.scalars().all()) | set(owners.scalars().all()))

    # ------------------------------------------------------------------
    # Permissions and subscriptions
    # ------------------------------------------------------------------

    @_lookup
    async def get_permission(
        self, user_id: int, resource_type: ResourceType | str, resource_uid: str
    ) -> Optional[Permission]:
        result = await self.session.execute(
            select(Permission).where(
                Permission.user_id == user_id,
                Permission.resource_type == ResourceType(resource_type).value,
                Permission.resource_uid == resource_uid,
            )
        )
        return result.scalar_one_or_none()

    @_lookup
    async def permission_levels(
        self,
        user_id: int,
        resource_type: ResourceType | str,
        uids: Sequence[str],
        propagations: Iterable[Propagation],
    ) -> dict[str, AccessLevel]:
        """Levels held on ``uids`` through rows with one of ``propagations``."""
        if not uids:
            return {}
        result = await self.session.execute(
            select(Permission.resource_uid, Permission.access_level).where(
                Permission.user_id == user_id,
                Permission.resource_type == ResourceType(resource_type).value,
                Permission.resource_uid.in_(list(uids)),
                Permission.propagation.in_([Propagation(p).value for p in propagations]),
            )
        )
        return {row.resource_uid: AccessLevel(row.access_level) for row in result.all()}

    @_lookup
    async def shared_uids(self, user_id: int, resource_type: ResourceType | str) -> list[str]:
        result = await self.session.execute(
            select(Permission.resource_uid).where(
                Permission.user_id == user_id,
                Permission.resource_type == ResourceType(resource_type).value,
            )
        )
        return list(result.scalars().all())

    @_lookup
    async def subscribed_task_ids(self, user_id: int) -> list[int]:
        result = await self.session.execute(select(TaskSubscriber.task_id).where(TaskSubscriber.user_id == user_id))
        return list(result.scalars().all())

    @_lookup
    async def is_task_subscriber(self, task_id: int, user_id: int) -> bool:
        return await self.session.get(TaskSubscriber, (task_id, user_id)) is not None
