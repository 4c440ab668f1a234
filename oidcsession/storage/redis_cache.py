from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Redis cache backend for authorization attempts and sessions.

    Values are stored as JSON under ``{segment}:{key}``.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        redis_url: str,
        *,
        segment: str = "idm",
        default_ttl_seconds: Optional[int] = None,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client: Any = None,
    ):
        self.redis_url = redis_url
        self.segment = segment
        self.default_ttl_seconds = default_ttl_seconds
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, key: str) -> str:
        return f"{self.segment}:{key}" if self.segment else key

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str, ctx: Any = None) -> Optional[Any]:
        cached = await self.client.get(self._key(key))
        if cached is None:
            return None
        return json.loads(cached)

    async def set(
        self, key: str, value: Any, ttl: Optional[int] = None, ctx: Any = None
    ) -> None:
        ttl = ttl if ttl is not None else self.default_ttl_seconds
        await self.client.set(self._key(key), json.dumps(value), ex=ttl or None)

    async def drop(self, key: str, ctx: Any = None) -> None:
        await self.client.delete(self._key(key))

    async def close(self) -> None:
        await self.client.aclose()
