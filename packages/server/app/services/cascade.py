"""
Cascade calculation: turn one action into the full set of Permission changes.

The calculator only reads. It produces upserts and deletes for the root
resource and every descendant reached through the ownership hierarchy::

    area -> projects -> (tasks + subtasks, notes)
    project -> tasks + subtasks, notes
    task -> subtasks

The root row carries the propagation of the action (``direct`` for shares,
``area_membership`` for departments); every descendant row is
``inherited``. Revokes delete the root row unconditionally but only the
``inherited`` rows below it, so an explicit share on a child survives.

A revoke then re-derives what the user still holds through grants
higher up the hierarchy or through department membership. Those rows come
back as ``inherited`` at the strongest remaining level. Removing a
member likewise keeps the subtrees of explicit project and task shares
inside the department.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Iterable, Optional

from app.core.errors import ValidationError
from app.services.store import ResourceStore

from taskgate_shared.schemas.common import (
    AccessLevel,
    AreaRole,
    Propagation,
    ResourceType,
    Verb,
    role_access_level,
)
from taskgate_shared.schemas.permissions import (
    ActionRequest,
    PermissionChanges,
    PermissionKey,
    PermissionRow,
)

Strategy = Callable[[Verb, ActionRequest], Awaitable[PermissionChanges]]

INHERITED_ONLY = frozenset({Propagation.INHERITED})
EXPLICIT = frozenset({Propagation.DIRECT, Propagation.MANUAL})
COVERING = EXPLICIT | {Propagation.INHERITED, Propagation.AREA_MEMBERSHIP}

_AREA_GRANT_VERBS = {Verb.AREA_MEMBER_ADD, Verb.AREA_MEMBER_ROLE_UPDATE}


class _ChangeSet:
    """Accumulates changes, keeping one entry per (user, type, uid)."""

    def __init__(self, action: ActionRequest):
        self.action = action
        self._upserts: dict[tuple, PermissionRow] = {}
        self._deletes: dict[tuple, PermissionKey] = {}

    def grant(
        self,
        resource_type: ResourceType,
        uids: Iterable[str],
        propagation: Propagation,
        level: Optional[AccessLevel] = None,
    ) -> None:
        level = level or self.action.access_level
        for uid in uids:
            row = PermissionRow(
                user_id=self.action.target_user_id,
                resource_type=resource_type.value,
                resource_uid=uid,
                access_level=level,
                propagation=propagation,
                granted_by_user_id=self.action.actor_user_id,
            )
            self._upserts.setdefault(row.identity, row)

    def revoke(
        self,
        resource_type: ResourceType,
        uids: Iterable[str],
        propagations: Optional[frozenset] = None,
    ) -> None:
        for uid in uids:
            key = PermissionKey(
                user_id=self.action.target_user_id,
                resource_type=resource_type.value,
                resource_uid=uid,
                propagations=propagations,
            )
            self._deletes.setdefault(key.identity, key)

    def result(self) -> PermissionChanges:
        return PermissionChanges(upserts=list(self._upserts.values()), deletes=list(self._deletes.values()))


class CascadeCalculator:
    def __init__(self, store: ResourceStore):
        self.store = store
        self._strategies: dict[str, Strategy] = {
            ResourceType.PROJECT.value: self._project,
            ResourceType.TASK.value: self._task,
            ResourceType.NOTE.value: self._note,
            ResourceType.AREA.value: self._area,
            "tag": self._tag,
        }

    async def calculate(self, verb: Verb | str, action: ActionRequest) -> PermissionChanges:
        strategy = self._strategies.get(action.resource_type)
        if strategy is None:
            raise ValidationError(f"Unsupported resource type: {action.resource_type}")
        return await strategy(Verb(verb), action)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _project(self, verb: Verb, action: ActionRequest) -> PermissionChanges:
        changes = _ChangeSet(action)
        if verb not in (Verb.SHARE_GRANT, Verb.SHARE_REVOKE):
            return changes.result()

        project = await self.store.find_owner(ResourceType.PROJECT, action.resource_uid)
        if project is None:
            return changes.result()

        task_uids, note_uids = await self._project_descendants(project.id)
        if verb is Verb.SHARE_GRANT:
            changes.grant(ResourceType.PROJECT, [project.uid], Propagation.DIRECT)
            changes.grant(ResourceType.TASK, task_uids, Propagation.INHERITED)
            changes.grant(ResourceType.NOTE, note_uids, Propagation.INHERITED)
            return changes.result()

        changes.revoke(ResourceType.PROJECT, [project.uid])
        changes.revoke(ResourceType.TASK, task_uids, INHERITED_ONLY)
        changes.revoke(ResourceType.NOTE, note_uids, INHERITED_ONLY)

        # department membership still reaches the project
        cover = await self._membership_level(action.target_user_id, project.area_id)
        if cover is not None:
            changes.grant(ResourceType.PROJECT, [project.uid], Propagation.INHERITED, cover)
            changes.grant(ResourceType.TASK, task_uids, Propagation.INHERITED, cover)
            changes.grant(ResourceType.NOTE, note_uids, Propagation.INHERITED, cover)
        return changes.result()

    async def _task(self, verb: Verb, action: ActionRequest) -> PermissionChanges:
        changes = _ChangeSet(action)
        if verb not in (Verb.SHARE_GRANT, Verb.SHARE_REVOKE):
            return changes.result()

        task = await self.store.find_owner(ResourceType.TASK, action.resource_uid)
        if task is None:
            return changes.result()

        subtask_uids = await self.store.find_descendant_task_uids(task.id)
        if verb is Verb.SHARE_GRANT:
            changes.grant(ResourceType.TASK, [task.uid], Propagation.DIRECT)
            changes.grant(ResourceType.TASK, subtask_uids, Propagation.INHERITED)
            return changes.result()

        changes.revoke(ResourceType.TASK, [task.uid])
        changes.revoke(ResourceType.TASK, subtask_uids, INHERITED_ONLY)

        user_id = action.target_user_id
        ancestor_uids, project_id = await self.store.task_lineage(task.id)
        ancestor_levels = await self.store.permission_levels(user_id, ResourceType.TASK, ancestor_uids, COVERING)
        cover = _strongest(
            [*ancestor_levels.values(), await self._project_cover(user_id, project_id)]
        )
        if cover is not None:
            changes.grant(ResourceType.TASK, [task.uid, *subtask_uids], Propagation.INHERITED, cover)
        return changes.result()

    async def _note(self, verb: Verb, action: ActionRequest) -> PermissionChanges:
        changes = _ChangeSet(action)
        if verb is Verb.SHARE_GRANT:
            changes.grant(ResourceType.NOTE, [action.resource_uid], Propagation.DIRECT)
        elif verb is Verb.SHARE_REVOKE:
            changes.revoke(ResourceType.NOTE, [action.resource_uid])
            note = await self.store.find_owner(ResourceType.NOTE, action.resource_uid)
            if note is not None:
                cover = await self._project_cover(action.target_user_id, note.project_id)
                if cover is not None:
                    changes.grant(ResourceType.NOTE, [note.uid], Propagation.INHERITED, cover)
        return changes.result()

    async def _area(self, verb: Verb, action: ActionRequest) -> PermissionChanges:
        changes = _ChangeSet(action)
        if verb not in _AREA_GRANT_VERBS and verb is not Verb.AREA_MEMBER_REMOVE:
            return changes.result()

        area = await self.store.find_owner(ResourceType.AREA, action.resource_uid)
        if area is None:
            return changes.result()

        projects = await self.store.list_area_projects(area.id)
        project_uids = [project_uid for _, project_uid in projects]

        if verb in _AREA_GRANT_VERBS:
            changes.grant(ResourceType.AREA, [area.uid], Propagation.AREA_MEMBERSHIP)
            changes.grant(ResourceType.PROJECT, project_uids, Propagation.INHERITED)
            for project_id, _ in projects:
                task_uids, note_uids = await self._project_descendants(project_id)
                changes.grant(ResourceType.TASK, task_uids, Propagation.INHERITED)
                changes.grant(ResourceType.NOTE, note_uids, Propagation.INHERITED)
            return changes.result()

        user_id = action.target_user_id
        changes.revoke(ResourceType.AREA, [area.uid])
        changes.revoke(ResourceType.PROJECT, project_uids, INHERITED_ONLY)
        explicit = await self.store.permission_levels(user_id, ResourceType.PROJECT, project_uids, EXPLICIT)
        for project_id, project_uid in projects:
            tree = await self.store.project_task_tree(project_id)
            task_uids = tree.all_uids()
            note_uids = await self.store.find_project_note_uids(project_id)
            changes.revoke(ResourceType.TASK, task_uids, INHERITED_ONLY)
            changes.revoke(ResourceType.NOTE, note_uids, INHERITED_ONLY)

            # explicit shares inside the department keep their own subtrees
            project_level = explicit.get(project_uid)
            task_levels = {uid: project_level for uid in task_uids} if project_level is not None else {}
            shared = await self.store.permission_levels(user_id, ResourceType.TASK, task_uids, EXPLICIT)
            for node in tree.nodes.values():
                if node.uid not in shared:
                    continue
                for child in tree.descendants(node.id):
                    task_levels[child.uid] = _strongest([task_levels.get(child.uid), shared[node.uid]])
            for uid, level in task_levels.items():
                changes.grant(ResourceType.TASK, [uid], Propagation.INHERITED, level)
            if project_level is not None:
                changes.grant(ResourceType.NOTE, note_uids, Propagation.INHERITED, project_level)
        return changes.result()

    async def _tag(self, verb: Verb, action: ActionRequest) -> PermissionChanges:
        # tags carry no permissions
        return PermissionChanges()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _project_descendants(self, project_id: int) -> tuple[list[str], list[str]]:
        tasks = await self.store.find_project_task_uids(project_id)
        notes = await self.store.find_project_note_uids(project_id)
        return tasks, notes

    async def _membership_level(self, user_id: int, area_id: Optional[int]) -> Optional[AccessLevel]:
        if area_id is None:
            return None
        membership = await self.store.find_membership(area_id, user_id)
        if membership is None:
            return None
        return role_access_level(AreaRole(membership.role))

    async def _project_cover(self, user_id: int, project_id: Optional[int]) -> Optional[AccessLevel]:
        """Strongest level the user holds on a project, by row or by membership."""
        if project_id is None:
            return None
        placement = await self.store.project_placement(project_id)
        if placement is None:
            return None
        project_uid, area_id = placement
        held = await self.store.permission_levels(user_id, ResourceType.PROJECT, [project_uid], COVERING)
        return _strongest([held.get(project_uid), await self._membership_level(user_id, area_id)])


def _strongest(levels: Iterable[Optional[AccessLevel]]) -> Optional[AccessLevel]:
    present = [level for level in levels if level is not None and level is not AccessLevel.NONE]
    return max(present, key=lambda level: level.rank) if present else None
