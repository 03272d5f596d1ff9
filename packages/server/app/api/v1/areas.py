"""
Department endpoints: membership and subscribers.

Role changes and removals re-cascade the member's access to every project,
task and note in the department.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from app.core.auth import AuthenticatedUser, get_current_user
from app.services import area_subscribers, areas
from app.services.access import require_access

from taskgate_shared.schemas.areas import (
    MemberAddRequest,
    MemberListResponse,
    MemberRoleUpdateRequest,
    SubscriberAddRequest,
    SubscriberListResponse,
    SubscriberRead,
)
from taskgate_shared.schemas.common import AccessLevel, ResourceType

router = APIRouter()


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get("/{area_uid}/members", response_model=MemberListResponse)
async def list_members(
    area_uid: str,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    await require_access(
        auth.ctx, auth.principal, ResourceType.AREA, area_uid, AccessLevel.RO, not_found_message="Area not found"
    )
    return MemberListResponse(members=await areas.get_members(auth.ctx, area_uid))


@router.post("/{area_uid}/members", response_model=MemberListResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    area_uid: str,
    body: MemberAddRequest,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    members = await areas.add_member(auth.ctx, area_uid, body.user_id, body.role, auth.principal)
    return MemberListResponse(members=members)


@router.delete("/{area_uid}/members/{user_id}", response_model=MemberListResponse)
async def remove_member(
    area_uid: str,
    user_id: int,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    members = await areas.remove_member(auth.ctx, area_uid, user_id, auth.principal)
    return MemberListResponse(members=members)


@router.patch("/{area_uid}/members/{user_id}/role", response_model=MemberListResponse)
async def update_member_role(
    area_uid: str,
    user_id: int,
    body: MemberRoleUpdateRequest,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    members = await areas.update_role(auth.ctx, area_uid, user_id, body.role, auth.principal)
    return MemberListResponse(members=members)


# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------


@router.get("/{area_uid}/subscribers", response_model=SubscriberListResponse)
async def list_subscribers(
    area_uid: str,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    await require_access(
        auth.ctx, auth.principal, ResourceType.AREA, area_uid, AccessLevel.RO, not_found_message="Area not found"
    )
    return SubscriberListResponse(subscribers=await area_subscribers.list_subscribers(auth.ctx, area_uid))


@router.post("/{area_uid}/subscribers", response_model=SubscriberRead, status_code=status.HTTP_201_CREATED)
async def add_subscriber(
    area_uid: str,
    body: SubscriberAddRequest,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    return await area_subscribers.add_subscriber(auth.ctx, area_uid, body.user_id, auth.principal)


@router.delete("/{area_uid}/subscribers/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_subscriber(
    area_uid: str,
    user_id: int,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    await area_subscribers.remove_subscriber(auth.ctx, area_uid, user_id, auth.principal)
