from __future__ import annotations

from typing import Any, Optional

from oidcsession.logging import get_logger
from oidcsession.storage.cache import CacheAdapter
from oidcsession.storage.models import Session, TokenSet

logger = get_logger(__name__)


def normalize_token_set(token_set: TokenSet) -> TokenSet:
    """Materialise lazily computed claims into a plain mapping.

    Must run before every persist; readers assume ``claims`` is a plain value.
    """
    if callable(token_set.claims):
        token_set.claims = token_set.claims()
    return token_set


class SessionStore:
    """Authenticated sessions keyed by the opaque handle from the session cookie."""

    def __init__(self, cache: CacheAdapter, *, ttl_seconds: Optional[int] = None) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def put(self, handle: str, token_set: TokenSet, ctx: Any = None) -> Session:
        token_set = normalize_token_set(token_set)
        session = Session(token_set=token_set, claims=token_set.claims)
        await self.cache.set(handle, session.to_dict(), self.ttl_seconds, ctx)
        return session

    async def get(self, handle: str, ctx: Any = None) -> Optional[Session]:
        data = await self.cache.get(handle, ctx)
        if not data or not isinstance(data, dict):
            return None
        return Session.from_dict(data)

    async def drop(self, handle: str, ctx: Any = None) -> None:
        await self.cache.drop(handle, ctx)
        logger.debug("session_dropped")
