"""Note model."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IdentityMixin, TimestampMixin


class Note(IdentityMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "notes"

    title: str = Field(nullable=False)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)  # owner
    project_id: Optional[int] = Field(default=None, foreign_key="projects.id", index=True)
