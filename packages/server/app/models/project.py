"""Project model."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IdentityMixin, TimestampMixin


class Project(IdentityMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "projects"

    name: str = Field(nullable=False)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)  # owner
    area_id: Optional[int] = Field(default=None, foreign_key="areas.id", index=True)
