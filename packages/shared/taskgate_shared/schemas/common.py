from enum import Enum
from typing import Optional
from pydantic import BaseModel


class AccessLevel(str, Enum):
    NONE = "none"
    RO = "ro"
    RW = "rw"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return ACCESS_ORDER.index(self)

    def at_least(self, required: "AccessLevel") -> bool:
        return self.rank >= AccessLevel(required).rank

    def __lt__(self, other):
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank >= other.rank


# Total order used for comparisons: none < ro < rw < admin
ACCESS_ORDER: list["AccessLevel"] = [
    AccessLevel.NONE,
    AccessLevel.RO,
    AccessLevel.RW,
    AccessLevel.ADMIN,
]

# Levels that may be stored on a Permission row
GRANTABLE_LEVELS = {AccessLevel.RO, AccessLevel.RW, AccessLevel.ADMIN}


class ResourceType(str, Enum):
    PROJECT = "project"
    TASK = "task"
    NOTE = "note"
    AREA = "area"


class Propagation(str, Enum):
    DIRECT = "direct"
    INHERITED = "inherited"
    AREA_MEMBERSHIP = "area_membership"
    ASSIGNMENT = "assignment"
    SUBSCRIPTION = "subscription"
    MANUAL = "manual"


class Verb(str, Enum):
    SHARE_GRANT = "share_grant"
    SHARE_REVOKE = "share_revoke"
    AREA_MEMBER_ADD = "area_member_add"
    AREA_MEMBER_REMOVE = "area_member_remove"
    AREA_MEMBER_ROLE_UPDATE = "area_member_role_update"
    AREA_OWNERSHIP_TRANSFER = "area_ownership_transfer"
    TASK_SUBSCRIBE = "task_subscribe"
    TASK_UNSUBSCRIBE = "task_unsubscribe"
    TASK_ASSIGN = "task_assign"
    TASK_UNASSIGN = "task_unassign"
    TAG = "tag"


# Verbs the route layer may hand to the action executor
SHARE_VERBS = {Verb.SHARE_GRANT, Verb.SHARE_REVOKE}
AREA_VERBS = {Verb.AREA_MEMBER_ADD, Verb.AREA_MEMBER_REMOVE, Verb.AREA_MEMBER_ROLE_UPDATE}


class AreaRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


def role_access_level(role: "AreaRole") -> AccessLevel:
    """Department admins get admin access, plain members rw."""
    return AccessLevel.ADMIN if AreaRole(role) == AreaRole.ADMIN else AccessLevel.RW


class SubscriberSource(str, Enum):
    MANUAL = "manual"
    ADMIN_ROLE = "admin_role"


class APIError(BaseModel):
    code: str
    message: str
    status: int
    department_name: Optional[str] = None
