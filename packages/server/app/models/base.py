"""Base mixins for SQLModel tables."""

from datetime import datetime, timezone
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_uid() -> str:
    return uuid.uuid4().hex


class TimestampMixin(SQLModel):
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": _utcnow},
        sa_type=sa.DateTime(timezone=True),
    )


class IdentityMixin(SQLModel):
    """Numeric primary key for joins plus a stable public uid."""

    id: Optional[int] = Field(default=None, primary_key=True)
    uid: str = Field(
        default_factory=generate_uid,
        unique=True,
        index=True,
        nullable=False,
    )
