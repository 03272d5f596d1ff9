"""
Request authentication for Taskgate.

Callers present ``Authorization: Bearer <user uid or numeric id>``; the
token is normalized through the identity adapter into a ``Principal``.
Credential issuance lives in the surrounding platform.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import Depends, HTTPException
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.services.context import OperationContext
from app.services.identity import Principal

log = structlog.get_logger()

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


class AuthenticatedUser:
    """Container for the authenticated principal and the request's operation context."""

    def __init__(self, principal: Principal, ctx: OperationContext):
        self.principal = principal
        self.ctx = ctx
        self.user_id = principal.id
        self.uid = principal.uid
        self.is_super_admin = principal.is_super_admin


async def get_context(session: AsyncSession = Depends(get_session)) -> OperationContext:
    """One OperationContext per request, so caches never outlive it."""
    return OperationContext(session)


def _parse_bearer(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Authentication required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Depends(api_key_header),
    ctx: OperationContext = Depends(get_context),
) -> AuthenticatedUser:
    token = _parse_bearer(authorization)
    principal = await ctx.identity.principal(token)
    if principal is None:
        log.info("auth.unknown_user")
        raise HTTPException(status_code=401, detail="User not found")
    return AuthenticatedUser(principal, ctx)
