"""Permission model: one row per (user, resource_type, resource_uid)."""

from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class Permission(TimestampMixin, SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "resource_type", "resource_uid", name="permissions_user_resource_unique"
        ),
        sa.Index("ix_permissions_user_type", "user_id", "resource_type"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", nullable=False)
    resource_type: str = Field(nullable=False)  # project | task | note | area
    resource_uid: str = Field(nullable=False, index=True)
    access_level: str = Field(nullable=False)  # ro | rw | admin
    # direct | inherited | area_membership | assignment | subscription | manual
    propagation: str = Field(nullable=False, default="direct")
    granted_by_user_id: Optional[int] = Field(default=None, foreign_key="users.id")
    source_action_id: Optional[int] = Field(default=None, foreign_key="actions.id")
