"""Access lookup and visibility listing for the authenticated caller."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.auth import AuthenticatedUser, get_current_user
from app.services.access import parse_resource_type, resolve_access
from app.services.visibility import list_visible

from taskgate_shared.schemas.permissions import AccessResponse, VisibleResponse

router = APIRouter()


@router.get("/access/{resource_type}/{uid}", response_model=AccessResponse)
async def get_access(
    resource_type: str,
    uid: str,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    """Effective access level of the caller on one resource."""
    rtype = parse_resource_type(resource_type)
    level = await resolve_access(auth.ctx, auth.principal, rtype, uid)
    return AccessResponse(resource_type=rtype.value, resource_uid=uid, access_level=level)


@router.get("/visible/{resource_type}", response_model=VisibleResponse)
async def get_visible(
    resource_type: str,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    """UIDs of every resource of a type the caller can see."""
    rtype = parse_resource_type(resource_type)
    uids = await list_visible(auth.ctx, rtype, auth.principal)
    return VisibleResponse(resource_type=rtype.value, uids=uids)
