from __future__ import annotations

import html
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from oidcsession.config import Settings
from oidcsession.logging import get_logger
from oidcsession.service.errors import StateNotFoundError
from oidcsession.service.hooks import LifecycleHooks
from oidcsession.service.oidc_client import ClientProvider
from oidcsession.service.paths import fully_qualified_local_path, local_redirect_url
from oidcsession.service.session_store import SessionStore, normalize_token_set
from oidcsession.service.state_store import StateStore
from oidcsession.storage.models import AuthorizationAttempt, TokenSet

logger = get_logger(__name__)


@dataclass
class CallbackOutcome:
    """Result of handling a provider callback.

    Exactly one of ``redirect_url``, ``html`` or ``hook_response`` is set.
    ``session_handle`` is set when a session was stored and the cookie must be
    written.
    """

    redirect_url: Optional[str] = None
    html: Optional[str] = None
    hook_response: Any = None
    session_handle: Optional[str] = None
    back_to_path: Optional[str] = None


def render_post_auth_redirect(destination: str, script_path: str) -> str:
    # A 302 here can drop the cookie just set on the same response in some
    # browsers, so the redirect happens client side.
    dest = html.escape(destination, quote=True)
    src = html.escape(script_path, quote=True)
    return (
        f'<input id="backToPath" type="hidden" value="{dest}" />\n'
        f'<script type="application/javascript" src="{src}"></script>\n'
        f'<noscript>\n  <a href="{dest}">Please click here to continue</a>\n</noscript>'
    )


class CallbackHandler:
    """Turns provider callbacks into either an error redirect or a session."""

    def __init__(
        self,
        settings: Settings,
        state_store: StateStore,
        session_store: SessionStore,
        client_provider: ClientProvider,
        hooks: Optional[LifecycleHooks] = None,
    ) -> None:
        self.settings = settings
        self.state_store = state_store
        self.session_store = session_store
        self.client_provider = client_provider
        self.hooks = hooks or LifecycleHooks()

    async def handle_authorisation_error(
        self,
        state: str,
        error_message: Optional[str],
        error_description: Optional[str],
        ctx: Any = None,
    ) -> CallbackOutcome:
        attempt = await self.state_store.consume(state, ctx) if state else None
        disallowed = (
            attempt.disallowed_redirect_path if attempt else None
        ) or self.settings.disallowed_redirect_path

        redirect_url = local_redirect_url(
            disallowed,
            self.settings.app_domain,
            {
                "errorMessage": error_message or "",
                "errorDescription": error_description or "",
                "state": state or "",
            },
        )

        if attempt is not None:
            await self.state_store.end(state, ctx)

        logger.warning(
            "authorisation_rejected",
            error_message=error_message,
            error_description=error_description,
            pending_attempt=attempt is not None,
        )
        return CallbackOutcome(redirect_url=redirect_url)

    async def handle_validated_token(
        self,
        state: str,
        attempt: AuthorizationAttempt,
        token_set: TokenSet,
        *,
        session_handle: Optional[str] = None,
        request: Any = None,
        ctx: Any = None,
    ) -> CallbackOutcome:
        back_to_path = attempt.back_to_path or self.settings.default_back_to_path
        token_set = normalize_token_set(token_set)
        claims = token_set.claims or {}
        logger.info("tokens_validated", sub=claims.get("sub"), policy=attempt.policy_name)

        # The attempt has served its purpose once authentication is complete
        await self.state_store.end(state, ctx)

        handle = session_handle or str(uuid.uuid4())
        await self.session_store.put(handle, token_set, ctx)

        hook_result = await self.hooks.run(
            "pre_return_path_redirect", request, token_set, back_to_path
        )
        if hook_result:
            return CallbackOutcome(
                hook_response=hook_result, session_handle=handle, back_to_path=back_to_path
            )

        destination = fully_qualified_local_path(back_to_path, self.settings.app_domain)
        return CallbackOutcome(
            html=render_post_auth_redirect(
                destination, self.settings.post_authentication_redirect_js_path
            ),
            session_handle=handle,
            back_to_path=back_to_path,
        )

    async def complete(
        self,
        state: str,
        code: str,
        *,
        session_handle: Optional[str] = None,
        request: Any = None,
        ctx: Any = None,
    ) -> CallbackOutcome:
        """Exchange ``code`` for tokens and finish the pending attempt for ``state``."""
        attempt = await self.state_store.consume(state, ctx) if state else None
        if attempt is None:
            logger.warning("authorisation_state_not_found")
            raise StateNotFoundError(
                "no pending authorization attempt for this state",
                detail={"state": state},
            )

        client = await self.client_provider.get_client(attempt.policy_name)
        token_set = await client.exchange_code(
            code=code,
            redirect_uri=self.settings.redirect_uri_fqdn,
            code_verifier=attempt.code_verifier,
            nonce=attempt.nonce,
        )
        return await self.handle_validated_token(
            state,
            attempt,
            token_set,
            session_handle=session_handle,
            request=request,
            ctx=ctx,
        )
