from __future__ import annotations

import hashlib
from dataclasses import replace
from typing import Any, Optional

from oidcsession.logging import get_logger
from oidcsession.storage.cache import CacheAdapter
from oidcsession.storage.models import AuthorizationAttempt

logger = get_logger(__name__)


def state_key(state: str) -> str:
    """Fixed-length cache key for a state token.

    State tokens may be arbitrarily long; some backends limit key size, so the
    token is hashed. Not used for anything security-sensitive.
    """
    return hashlib.md5(state.encode("utf-8"), usedforsecurity=False).hexdigest()


class StateStore:
    """Short-lived authorization attempts keyed by ``state_key(state)``."""

    def __init__(self, cache: CacheAdapter) -> None:
        self.cache = cache

    async def begin(self, state: str, attempt: AuthorizationAttempt, ctx: Any = None) -> None:
        key = state_key(state)
        if attempt.state_key != key:
            attempt = replace(attempt, state_key=key)
        # TTL is left to the backend default
        await self.cache.set(key, attempt.to_dict(), None, ctx)
        logger.debug("authorization_attempt_started", state_key=key, policy=attempt.policy_name)

    async def consume(self, state: str, ctx: Any = None) -> Optional[AuthorizationAttempt]:
        """Look up the attempt for ``state``; dropping it is the caller's job."""
        data = await self.cache.get(state_key(state), ctx)
        if not data:
            return None
        return AuthorizationAttempt.from_dict(data)

    async def end(self, state: str, ctx: Any = None) -> None:
        await self.cache.drop(state_key(state), ctx)
