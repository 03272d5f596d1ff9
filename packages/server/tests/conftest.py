"""
Shared fixtures: a throwaway SQLite database per test plus seeding helpers.
"""

from __future__ import annotations

import itertools
import os
from dataclasses import dataclass
from typing import Any, Optional

os.environ.setdefault("TG_NOTIFICATIONS_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlmodel import select

from app.core.database import build_engine, build_session_factory, get_session, init_db
from app.main import app
from app.models.action import Action
from app.models.area import Area
from app.models.area_member import AreaMember
from app.models.area_subscriber import AreaSubscriber
from app.models.note import Note
from app.models.permission import Permission
from app.models.project import Project
from app.models.task import Task
from app.models.task_subscriber import TaskSubscriber
from app.models.user import User
from app.services.context import OperationContext


@dataclass(frozen=True)
class Ref:
    """Plain snapshot of a seeded row, safe to use after rollbacks."""

    id: int
    uid: str


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: list[tuple[str, dict]] = []

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("notification backend unavailable")
        self.events.append((event, payload))


class Seed:
    """Inserts rows and commits, returning ``Ref`` snapshots."""

    _counter = itertools.count(1)

    def __init__(self, session):
        self.session = session

    async def _save(self, obj) -> Ref:
        self.session.add(obj)
        await self.session.commit()
        return Ref(id=obj.id, uid=obj.uid)

    async def user(self, name: str = "user", *, admin: bool = False) -> Ref:
        n = next(self._counter)
        return await self._save(User(email=f"{name}{n}@example.com", name=name, is_admin=admin))

    async def area(self, owner: Ref, name: str = "Engineering") -> Ref:
        return await self._save(Area(name=name, user_id=owner.id))

    async def member(self, area: Ref, user: Ref, role: str = "member") -> None:
        self.session.add(AreaMember(area_id=area.id, user_id=user.id, role=role))
        await self.session.commit()

    async def area_subscriber(self, area: Ref, user: Ref, source: str = "manual") -> None:
        self.session.add(AreaSubscriber(area_id=area.id, user_id=user.id, source=source))
        await self.session.commit()

    async def project(self, owner: Ref, *, area: Optional[Ref] = None, name: str = "Project") -> Ref:
        return await self._save(Project(name=name, user_id=owner.id, area_id=area.id if area else None))

    async def task(
        self,
        owner: Ref,
        *,
        project: Optional[Ref] = None,
        parent: Optional[Ref] = None,
        assignee: Optional[Ref] = None,
        name: str = "Task",
    ) -> Ref:
        return await self._save(
            Task(
                name=name,
                user_id=owner.id,
                project_id=project.id if project else None,
                parent_task_id=parent.id if parent else None,
                assigned_to_user_id=assignee.id if assignee else None,
            )
        )

    async def note(self, owner: Ref, *, project: Optional[Ref] = None, title: str = "Note") -> Ref:
        return await self._save(Note(title=title, user_id=owner.id, project_id=project.id if project else None))

    async def permission(
        self, user: Ref, resource_type: str, uid: str, level: str = "ro", propagation: str = "direct"
    ) -> None:
        self.session.add(
            Permission(
                user_id=user.id,
                resource_type=resource_type,
                resource_uid=uid,
                access_level=level,
                propagation=propagation,
            )
        )
        await self.session.commit()

    async def task_subscriber(self, task: Ref, user: Ref) -> None:
        self.session.add(TaskSubscriber(task_id=task.id, user_id=user.id))
        await self.session.commit()

    # ------------------------------------------------------------------
    # Read-back helpers (column selects, never stale ORM state)
    # ------------------------------------------------------------------

    async def permissions(self, user: Ref) -> dict[tuple[str, str], tuple[str, str]]:
        result = await self.session.execute(
            select(
                Permission.resource_type,
                Permission.resource_uid,
                Permission.access_level,
                Permission.propagation,
            ).where(Permission.user_id == user.id)
        )
        return {(r.resource_type, r.resource_uid): (r.access_level, r.propagation) for r in result.all()}

    async def permission_action_ids(self, user: Ref) -> set[Optional[int]]:
        result = await self.session.execute(
            select(Permission.source_action_id).where(Permission.user_id == user.id)
        )
        return set(result.scalars().all())

    async def actions(self) -> list[tuple[str, str, Optional[int], Optional[dict]]]:
        result = await self.session.execute(
            select(Action.verb, Action.resource_uid, Action.target_user_id, Action.details).order_by(Action.id)
        )
        return [tuple(r) for r in result.all()]

    async def members(self, area: Ref) -> dict[int, str]:
        result = await self.session.execute(
            select(AreaMember.user_id, AreaMember.role).where(AreaMember.area_id == area.id)
        )
        return {r.user_id: r.role for r in result.all()}

    async def area_subscribers(self, area: Ref) -> dict[int, str]:
        result = await self.session.execute(
            select(AreaSubscriber.user_id, AreaSubscriber.source).where(AreaSubscriber.area_id == area.id)
        )
        return {r.user_id: r.source for r in result.all()}

    async def task_subscribers(self, task: Ref) -> set[int]:
        result = await self.session.execute(select(TaskSubscriber.user_id).where(TaskSubscriber.task_id == task.id))
        return set(result.scalars().all())

    async def area_owner(self, area: Ref) -> int:
        result = await self.session.execute(select(Area.user_id).where(Area.id == area.id))
        return result.scalar_one()

    async def task_assignee(self, task: Ref) -> Optional[int]:
        result = await self.session.execute(select(Task.assigned_to_user_id).where(Task.id == task.id))
        return result.scalar_one()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskgate.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session) -> Seed:
    return Seed(session)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ctx(session, notifier) -> OperationContext:
    return OperationContext(session, notifier=notifier, cache_enabled=True)


@pytest.fixture
async def client(session_factory):
    async def _session_override():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _session_override
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
