"""
Task hierarchy arena.

Tasks reference their parent through ``parent_task_id``. The arena keeps
every loaded node keyed by id plus a children index keyed by parent id,
and walks it with an explicit breadth-first worklist so depth never
touches the call stack. A visited set keeps traversal finite even if a
cycle slipped into the data.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.task import Task


@dataclass(frozen=True)
class TaskNode:
    id: int
    uid: str
    parent_id: Optional[int] = None


class TaskTree:
    def __init__(self) -> None:
        self.nodes: dict[int, TaskNode] = {}
        self.children: dict[int, list[int]] = defaultdict(list)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, task_id: int) -> bool:
        return task_id in self.nodes

    def add(self, task_id: int, uid: str, parent_id: Optional[int] = None) -> bool:
        """Add a node; returns False when it was already present."""
        if task_id in self.nodes:
            return False
        self.nodes[task_id] = TaskNode(id=task_id, uid=uid, parent_id=parent_id)
        if parent_id is not None:
            self.children[parent_id].append(task_id)
        return True

    def descendants(self, root_id: int, *, include_root: bool = False) -> list[TaskNode]:
        """Breadth-first list of the subtree under ``root_id``."""
        visited = {root_id}
        ordered: list[TaskNode] = []
        if include_root and root_id in self.nodes:
            ordered.append(self.nodes[root_id])

        queue = deque([root_id])
        while queue:
            current = queue.popleft()
            for child_id in self.children.get(current, ()):
                if child_id in visited:
                    continue
                visited.add(child_id)
                ordered.append(self.nodes[child_id])
                queue.append(child_id)
        return ordered

    def subtree_uids(self, root_id: int) -> list[str]:
        return [node.uid for node in self.descendants(root_id, include_root=True)]

    def all_uids(self) -> list[str]:
        return [node.uid for node in self.nodes.values()]

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    async def load(
        cls,
        session: AsyncSession,
        *,
        root_ids: Iterable[int] = (),
        project_id: Optional[int] = None,
    ) -> "TaskTree":
        """Load seed tasks and every task below them, one query per level."""
        tree = cls()
        seeds = []

        if project_id is not None:
            result = await session.execute(
                select(Task.id, Task.uid, Task.parent_task_id).where(Task.project_id == project_id)
            )
            seeds.extend(result.all())

        root_ids = list(root_ids)
        if root_ids:
            result = await session.execute(
                select(Task.id, Task.uid, Task.parent_task_id).where(Task.id.in_(root_ids))
            )
            seeds.extend(result.all())

        frontier = [row.id for row in seeds if tree.add(row.id, row.uid, row.parent_task_id)]

        while frontier:
            result = await session.execute(
                select(Task.id, Task.uid, Task.parent_task_id).where(Task.parent_task_id.in_(frontier))
            )
            frontier = [row.id for row in result.all() if tree.add(row.id, row.uid, row.parent_task_id)]

        return tree
