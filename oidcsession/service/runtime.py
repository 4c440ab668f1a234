from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlparse, urlunparse

from oidcsession.config import Settings, get_settings
from oidcsession.logging import get_logger
from oidcsession.service.callback import CallbackHandler
from oidcsession.service.credentials import CredentialAccessor
from oidcsession.service.hooks import LifecycleHooks
from oidcsession.service.oidc_client import AuthlibClientProvider, ClientProvider
from oidcsession.service.outbound import OutboundRequestBuilder
from oidcsession.service.session_store import SessionStore
from oidcsession.service.state_store import StateStore
from oidcsession.storage.cache import CacheAdapter, CacheBackend
from oidcsession.storage.errors import BackendError
from oidcsession.storage.memory import MemoryCache
from oidcsession.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_cache_backend(settings: Settings) -> CacheBackend:
    """Redis when ``REDIS_URL`` is set, otherwise the in-process TTL map.

    A configured Redis must answer a ping; there is no silent fallback to
    memory.
    """
    if settings.redis_url:
        backend = RedisCache(
            settings.redis_url,
            segment=settings.cache_segment,
            default_ttl_seconds=settings.cache_ttl_seconds,
        )
        try:
            backend.verify_connection()
        except Exception as exc:
            logger.error(
                "redis_connection_failed",
                redis_url=_mask_url_password(settings.redis_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise BackendError(
                "Redis is configured but unreachable", operation="connect"
            ) from exc
        logger.info("cache_backend_selected", backend="redis", redis_url=_mask_url_password(settings.redis_url))
        return backend
    logger.info("cache_backend_selected", backend="memory")
    return MemoryCache(settings.cache_ttl_seconds, segment=settings.cache_segment)


class IdentityService:
    """Holds the session-lifecycle components for one application.

    Built once at startup and handed to request handlers; nothing here is
    looked up globally.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        cache_backend: Optional[CacheBackend] = None,
        client_provider: Optional[ClientProvider] = None,
        hooks: Optional[LifecycleHooks] = None,
        sleep: Any = None,
    ) -> None:
        self.settings = settings
        self.hooks = hooks or LifecycleHooks()
        self.backend = cache_backend or build_cache_backend(settings)
        self.cache = CacheAdapter(
            self.backend, pass_request=settings.pass_request_to_cache_methods
        )
        self.client_provider = client_provider or AuthlibClientProvider(settings)

        self.state_store = StateStore(self.cache)
        self.session_store = SessionStore(self.cache)
        self.outbound = OutboundRequestBuilder(
            settings, self.state_store, self.client_provider
        )
        self.callback = CallbackHandler(
            settings,
            self.state_store,
            self.session_store,
            self.client_provider,
            self.hooks,
        )
        self.credentials = CredentialAccessor(
            settings,
            self.session_store,
            self.client_provider,
            self.hooks,
            sleep=sleep,
        )
        logger.info(
            "identity_service_initialized",
            app_domain=settings.app_domain,
            outbound_path=settings.outbound_path,
            redirect_uri=settings.redirect_uri_fqdn,
            pass_request_to_cache=settings.pass_request_to_cache_methods,
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> "IdentityService":
        return cls(get_settings(), **kwargs)

    # Convenience pass-throughs for host code

    async def get_credentials(self, session_handle, ctx=None):
        return await self.credentials.get_credentials(session_handle, ctx)

    async def get_claims(self, session_handle, ctx=None):
        return await self.credentials.get_claims(session_handle, ctx)

    async def refresh_token(self, session_handle, contact_id=None, ctx=None):
        return await self.credentials.refresh(session_handle, contact_id, ctx)

    def generate_authentication_url(self, back_to_path=None, **kwargs):
        return self.outbound.generate_authentication_url(back_to_path, **kwargs)

    async def generate_outbound_redirect_url(self, *args, **kwargs):
        return await self.outbound.generate_outbound_redirect_url(*args, **kwargs)

    async def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()
