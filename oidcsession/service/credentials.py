from __future__ import annotations

from typing import Any, Optional, Union

from oidcsession.config import Settings
from oidcsession.logging import get_logger
from oidcsession.service.errors import SessionAbsentError
from oidcsession.service.hooks import LifecycleHooks
from oidcsession.service.oidc_client import ClientProvider
from oidcsession.service.retry import retryable
from oidcsession.service.session_store import SessionStore, normalize_token_set
from oidcsession.storage.models import Claims, Session

logger = get_logger(__name__)


class CredentialAccessor:
    """Read path for the rest of the application: session lookup and refresh."""

    def __init__(
        self,
        settings: Settings,
        session_store: SessionStore,
        client_provider: ClientProvider,
        hooks: Optional[LifecycleHooks] = None,
        *,
        sleep=None,
    ) -> None:
        self.settings = settings
        self.session_store = session_store
        self.client_provider = client_provider
        self.hooks = hooks or LifecycleHooks()
        self._sleep = sleep

    async def get_credentials(
        self, session_handle: Optional[str], ctx: Any = None
    ) -> Union[Session, bool]:
        """Session for ``session_handle``, or ``False`` when there is none."""
        if not session_handle:
            return False
        session = await self.session_store.get(session_handle, ctx)
        if session is None:
            return False
        return session

    async def get_claims(
        self, session_handle: Optional[str], ctx: Any = None
    ) -> Optional[Claims]:
        credentials = await self.get_credentials(session_handle, ctx)
        if credentials:
            return credentials.claims
        return None

    async def refresh(
        self,
        session_handle: Optional[str],
        contact_id: Optional[str] = None,
        ctx: Any = None,
    ) -> Session:
        """Refresh the session's tokens and replace the stored record.

        Args:
            session_handle: Handle from the caller's session cookie
            contact_id: Contact id to record if the token does not carry one
            ctx: Request context forwarded to the cache

        Raises:
            SessionAbsentError: There is no session to refresh
            ProviderRefreshError: Every refresh attempt failed
        """
        existing = await self.get_credentials(session_handle, ctx)
        if not existing:
            raise SessionAbsentError("refresh requires an existing session")

        prior_claims = existing.claims or {}
        policy_name = prior_claims.get("tfp") or prior_claims.get("acr") or ""
        client = await self.client_provider.get_client(policy_name)
        refresh_token = existing.token_set.refresh_token

        retry_kwargs = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        new_token_set = await retryable(
            lambda: client.refresh(refresh_token),
            multiplier_secs=self.settings.retry_delay_multiplier_secs,
            max_attempts=self.settings.retry_max_attempts,
            name="token_refresh",
            **retry_kwargs,
        )
        refreshed = normalize_token_set(new_token_set)
        if refreshed.claims is None:
            # provider returned no id token; identity is unchanged but the
            # session lifetime follows the new access token
            refreshed.claims = dict(prior_claims)
            if refreshed.expires_at is not None:
                refreshed.claims["exp"] = refreshed.expires_at

        contact_id = (
            contact_id
            or refreshed.claims.get("contactId")
            or prior_claims.get("contactId")
        )
        if contact_id:
            refreshed.claims = {**refreshed.claims, "contactId": contact_id}

        session = await self.session_store.put(session_handle, refreshed, ctx)
        logger.info("tokens_refreshed", policy=policy_name, sub=refreshed.claims.get("sub"))
        return session

    async def logout(
        self, session_handle: Optional[str], request: Any = None, ctx: Any = None
    ) -> Any:
        """Run the pre-logout hook and drop the session record.

        Returns the hook's result so the caller can send it instead of the
        default logout redirect.
        """
        hook_result = await self.hooks.run("pre_logout", request)
        if session_handle:
            await self.session_store.drop(session_handle, ctx)
        logger.info("session_logged_out", had_session=bool(session_handle))
        return hook_result
