"""Department (area) model."""

from sqlmodel import Field, SQLModel

from .base import IdentityMixin, TimestampMixin


class Area(IdentityMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "areas"

    name: str = Field(nullable=False)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)  # owner
