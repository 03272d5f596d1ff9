"""Task model. Subtasks hang off ``parent_task_id`` to any depth."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IdentityMixin, TimestampMixin


class Task(IdentityMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "tasks"

    name: str = Field(nullable=False)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)  # owner
    project_id: Optional[int] = Field(default=None, foreign_key="projects.id", index=True)
    parent_task_id: Optional[int] = Field(default=None, foreign_key="tasks.id", index=True)
    assigned_to_user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
