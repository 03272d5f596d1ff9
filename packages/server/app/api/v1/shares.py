"""
Sharing endpoints: grant or revoke access on projects, tasks and notes.

Every share goes through the action executor so the grant cascades to
descendants and is recorded in the action log.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from app.core.auth import AuthenticatedUser, get_current_user
from app.core.errors import ValidationError
from app.services.actions import execute_action

from taskgate_shared.schemas.common import SHARE_VERBS
from taskgate_shared.schemas.permissions import ActionRequest, ShareRequest, ShareResponse

router = APIRouter()


@router.post("", response_model=ShareResponse, status_code=status.HTTP_201_CREATED)
async def create_share(
    body: ShareRequest,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    """Grant or revoke a user's access to a resource and everything below it."""
    if body.verb not in SHARE_VERBS:
        raise ValidationError(f"Unsupported share verb: {body.verb.value}")

    action_id = await execute_action(
        auth.ctx,
        ActionRequest(
            verb=body.verb,
            actor_user_id=auth.user_id,
            target_user_id=body.target_user_id,
            resource_type=body.resource_type,
            resource_uid=body.resource_uid,
            access_level=body.access_level,
        ),
    )
    return ShareResponse(action_id=action_id)
