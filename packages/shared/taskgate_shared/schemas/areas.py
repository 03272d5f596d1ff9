"""Department (area) membership and subscriber schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .common import AreaRole, SubscriberSource


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class MemberAddRequest(BaseModel):
    user_id: Optional[int] = None
    role: Optional[str] = None


class MemberRoleUpdateRequest(BaseModel):
    role: Optional[str] = None


class SubscriberAddRequest(BaseModel):
    user_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class MemberRead(BaseModel):
    user_id: int
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: AreaRole
    joined_at: Optional[datetime] = None


class MemberListResponse(BaseModel):
    members: List[MemberRead]


class SubscriberRead(BaseModel):
    user_id: int
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    source: SubscriberSource
    added_by: Optional[int] = None


class SubscriberListResponse(BaseModel):
    subscribers: List[SubscriberRead]
