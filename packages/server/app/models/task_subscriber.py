"""Task subscriber (join table)."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class TaskSubscriber(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tasks_subscribers"

    task_id: int = Field(foreign_key="tasks.id", primary_key=True)
    user_id: int = Field(foreign_key="users.id", primary_key=True, index=True)
