from typing import List, Optional
from pydantic import BaseModel


class TaskSubscriberAdd(BaseModel):
    user_id: Optional[int] = None


class TaskSubscriberRead(BaseModel):
    user_id: int
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None


class TaskSubscriberListResponse(BaseModel):
    subscribers: List[TaskSubscriberRead]


class TaskAssigneeSet(BaseModel):
    user_id: Optional[int] = None


class TaskAssignmentRead(BaseModel):
    task_uid: str
    assigned_to_user_id: Optional[int] = None
