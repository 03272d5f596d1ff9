"""Per-operation state shared by the resolver, predicate builder and executor."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import NotFound
from app.services.identity import IdentityService, Principal, UserRef
from app.services.notifications import Notifier, get_notifier
from app.services.store import ResourceStore


class OperationContext:
    """Bundles the session, the store and a request-scoped cache.

    One context lives for exactly one request or background job; the cache
    is never shared across contexts and is dropped after every mutation.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        notifier: Optional[Notifier] = None,
        cache_enabled: Optional[bool] = None,
    ):
        self.session = session
        self.cache: dict[Any, Any] = {}
        self.cache_enabled = (
            get_settings().visibility_cache_enabled if cache_enabled is None else cache_enabled
        )
        self.store = ResourceStore(session)
        self.identity = IdentityService(session, cache=self.cache)
        self.notifier = notifier if notifier is not None else get_notifier()

    async def principal(self, user_ref: UserRef) -> Principal:
        principal = await self.identity.principal(user_ref)
        if principal is None:
            raise NotFound("User not found")
        return principal

    async def cached(self, key: Any, loader):
        """Return ``cache[key]``, computing it with ``loader()`` on a miss."""
        if self.cache_enabled and key in self.cache:
            return self.cache[key]
        value = await loader()
        if self.cache_enabled:
            self.cache[key] = value
        return value

    def invalidate(self) -> None:
        self.cache.clear()
