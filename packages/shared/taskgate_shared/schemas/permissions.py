"""Permission, cascade and action schemas."""

from __future__ import annotations

from typing import FrozenSet, List, Optional

from pydantic import BaseModel, Field

from .common import AccessLevel, Propagation, Verb


class PermissionKey(BaseModel):
    """Storage key of a Permission row, unique per (user, type, uid).

    ``propagations`` restricts a delete to rows whose propagation is in the
    set; ``None`` deletes the row whatever its propagation.
    """

    user_id: int
    resource_type: str
    resource_uid: str
    propagations: Optional[FrozenSet[Propagation]] = None

    model_config = {"frozen": True}

    @property
    def identity(self) -> tuple[int, str, str]:
        return (self.user_id, self.resource_type, self.resource_uid)


class PermissionRow(BaseModel):
    """A Permission upsert produced by the cascade calculator."""

    user_id: int
    resource_type: str
    resource_uid: str
    access_level: AccessLevel
    propagation: Propagation
    granted_by_user_id: Optional[int] = None
    source_action_id: Optional[int] = None

    @property
    def identity(self) -> tuple[int, str, str]:
        return (self.user_id, self.resource_type, self.resource_uid)


class PermissionChanges(BaseModel):
    upserts: List[PermissionRow] = Field(default_factory=list)
    deletes: List[PermissionKey] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.upserts and not self.deletes


class ActionRequest(BaseModel):
    """Payload accepted by the action executor."""

    verb: Verb
    actor_user_id: int
    target_user_id: Optional[int] = None
    resource_type: str
    resource_uid: str
    access_level: Optional[AccessLevel] = None
    metadata: Optional[dict] = None


# ---------------------------------------------------------------------------
# HTTP payloads
# ---------------------------------------------------------------------------

class ShareRequest(BaseModel):
    verb: Verb
    resource_type: str
    resource_uid: str
    target_user_id: Optional[int] = None
    access_level: Optional[AccessLevel] = None


class ShareResponse(BaseModel):
    action_id: int


class AccessResponse(BaseModel):
    resource_type: str
    resource_uid: str
    access_level: AccessLevel


class VisibleResponse(BaseModel):
    resource_type: str
    uids: List[str]
