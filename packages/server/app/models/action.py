"""Action model (append-only audit log of permission-changing operations)."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import _utcnow


class Action(SQLModel, table=True):
    __tablename__ = "actions"

    id: Optional[int] = Field(default=None, primary_key=True)
    actor_user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    verb: str = Field(nullable=False)
    resource_type: str = Field(nullable=False)
    resource_uid: str = Field(nullable=False, index=True)
    target_user_id: Optional[int] = Field(default=None, foreign_key="users.id")
    access_level: Optional[str] = None
    details: Optional[dict] = Field(default=None, sa_column=sa.Column("metadata", sa.JSON, nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
