"""
Identity normalization: numeric user ids and UIDs collapse into one Principal.

The super-admin flag is keyed by UID, so a numeric id is always turned
into its UID before the privilege check. Everything below this boundary
works on ``Principal`` only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import LookupFailed
from app.models.user import User


@dataclass(frozen=True)
class Principal:
    id: int
    uid: str
    is_super_admin: bool = False


UserRef = Union["Principal", int, str]


class IdentityService:
    def __init__(self, session: AsyncSession, cache: Optional[dict] = None):
        self.session = session
        self._cache = cache if cache is not None else {}

    async def resolve_uid_for_user_id(self, user_id: int) -> Optional[str]:
        try:
            result = await self.session.execute(select(User.uid).where(User.id == user_id))
        except SQLAlchemyError as exc:
            raise LookupFailed(f"Could not resolve user {user_id}") from exc
        return result.scalar_one_or_none()

    async def is_super_admin(self, uid: Optional[str]) -> bool:
        if not uid:
            return False
        try:
            result = await self.session.execute(select(User.is_admin).where(User.uid == uid))
        except SQLAlchemyError as exc:
            raise LookupFailed(f"Could not load roles for user {uid}") from exc
        return bool(result.scalar_one_or_none())

    async def _id_for_uid(self, uid: str) -> Optional[int]:
        try:
            result = await self.session.execute(select(User.id).where(User.uid == uid))
        except SQLAlchemyError as exc:
            raise LookupFailed(f"Could not resolve user {uid}") from exc
        return result.scalar_one_or_none()

    async def principal(self, user_ref: Optional[UserRef]) -> Optional[Principal]:
        """Normalize an int id, numeric string or UID into a Principal.

        Returns None when the user does not exist.
        """
        if user_ref is None:
            return None
        if isinstance(user_ref, Principal):
            return user_ref

        cache_key = ("principal", str(user_ref))
        if cache_key in self._cache:
            return self._cache[cache_key]

        if isinstance(user_ref, int) or (isinstance(user_ref, str) and user_ref.isdigit()):
            user_id = int(user_ref)
            uid = await self.resolve_uid_for_user_id(user_id)
        else:
            uid = user_ref
            user_id = await self._id_for_uid(uid)

        if uid is None or user_id is None:
            return None

        principal = Principal(id=user_id, uid=uid, is_super_admin=await self.is_super_admin(uid))
        self._cache[cache_key] = principal
        return principal
