"""Department membership (join table). A user belongs to at most one department."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class AreaMember(TimestampMixin, SQLModel, table=True):
    __tablename__ = "areas_members"

    area_id: int = Field(foreign_key="areas.id", primary_key=True)
    user_id: int = Field(foreign_key="users.id", primary_key=True, index=True)
    role: str = Field(nullable=False, default="member")  # member | admin
