from __future__ import annotations

from typing import Any, Optional, Protocol

from oidcsession.logging import get_logger
from oidcsession.storage.errors import BackendError

logger = get_logger(__name__)


class CacheBackend(Protocol):
    """Host-supplied cache.

    ``ctx`` is the request context and is only passed when the adapter is
    configured to forward it.
    """

    async def get(self, key: str, ctx: Any = None) -> Optional[Any]: ...

    async def set(
        self, key: str, value: Any, ttl: Optional[int] = None, ctx: Any = None
    ) -> None: ...

    async def drop(self, key: str, ctx: Any = None) -> None: ...


class CacheAdapter:
    """Uniform get/set/drop over a pluggable backend.

    Backend failures surface as :class:`BackendError`; nothing is retried here.
    """

    def __init__(self, backend: CacheBackend, *, pass_request: bool = False) -> None:
        self.backend = backend
        self.pass_request = pass_request

    def _ctx_args(self, ctx: Any) -> tuple:
        return (ctx,) if self.pass_request else ()

    async def get(self, key: str, ctx: Any = None) -> Optional[Any]:
        try:
            return await self.backend.get(key, *self._ctx_args(ctx))
        except BackendError:
            raise
        except Exception as exc:
            logger.error("cache_get_failed", key=key, error=str(exc))
            raise BackendError("cache get failed", operation="get") from exc

    async def set(
        self, key: str, value: Any, ttl: Optional[int] = None, ctx: Any = None
    ) -> None:
        try:
            await self.backend.set(key, value, ttl, *self._ctx_args(ctx))
        except BackendError:
            raise
        except Exception as exc:
            logger.error("cache_set_failed", key=key, error=str(exc))
            raise BackendError("cache set failed", operation="set") from exc

    async def drop(self, key: str, ctx: Any = None) -> None:
        try:
            await self.backend.drop(key, *self._ctx_args(ctx))
        except BackendError:
            raise
        except Exception as exc:
            logger.error("cache_drop_failed", key=key, error=str(exc))
            raise BackendError("cache drop failed", operation="drop") from exc


__all__ = ["CacheAdapter", "CacheBackend"]
