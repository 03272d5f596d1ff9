"""Department subscriber model (task-creation notifications, not authorization)."""

from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class AreaSubscriber(TimestampMixin, SQLModel, table=True):
    __tablename__ = "areas_subscribers"
    __table_args__ = (
        sa.UniqueConstraint("area_id", "user_id", name="areas_subscribers_unique_idx"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    area_id: int = Field(foreign_key="areas.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    added_by: Optional[int] = Field(default=None, foreign_key="users.id")
    source: str = Field(nullable=False, default="manual")  # manual | admin_role
