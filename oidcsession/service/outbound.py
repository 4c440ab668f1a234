from __future__ import annotations

import uuid
from typing import Any, Mapping, Optional, Union
from urllib.parse import SplitResult, urlencode, urlsplit

from authlib.common.security import generate_token
from authlib.oauth2.rfc7636 import create_s256_code_challenge

from oidcsession.config import Settings
from oidcsession.logging import get_logger
from oidcsession.service.oidc_client import ClientProvider
from oidcsession.service.state_store import StateStore, state_key
from oidcsession.storage.models import AuthorizationAttempt

logger = get_logger(__name__)

FORCE_LOGIN_SENTINEL = "yes"
PKCE_VERIFIER_LENGTH = 64


def generate_pkce_pair() -> tuple[str, str]:
    """Return a ``(code_verifier, code_challenge)`` pair using S256."""
    verifier = generate_token(PKCE_VERIFIER_LENGTH)
    return verifier, create_s256_code_challenge(verifier)


def _is_forced(force_login: Union[bool, str, None]) -> bool:
    if isinstance(force_login, str):
        return force_login == FORCE_LOGIN_SENTINEL
    return bool(force_login)


class OutboundRequestBuilder:
    """Builds the URLs that send a user off to log in."""

    def __init__(
        self,
        settings: Settings,
        state_store: StateStore,
        client_provider: ClientProvider,
    ) -> None:
        self.settings = settings
        self.state_store = state_store
        self.client_provider = client_provider

    def generate_authentication_url(
        self,
        back_to_path: Optional[str] = None,
        *,
        policy_name: str = "",
        journey: str = "",
        force_login: bool = False,
        return_url_object: bool = False,
        state: str = "",
        nonce: str = "",
        scope: str = "",
        ga: Optional[str] = None,
    ) -> Union[str, SplitResult]:
        """URL of this application's outbound endpoint.

        Args:
            back_to_path: Where to send the user after they have logged in
            policy_name: Identity provider policy to send the user to
            journey: Identity app journey to send the user to
            force_login: Force a fresh login even if the provider has a session
            return_url_object: Return a ``SplitResult`` instead of a string
            state: Manually specify the state string
            nonce: Manually specify the nonce string
            scope: Manually specify the scope string
            ga: Cross-site analytics client id
        """
        params = {
            "backToPath": back_to_path or self.settings.default_back_to_path,
            "policyName": policy_name,
            "journey": journey,
            "forceLogin": FORCE_LOGIN_SENTINEL if force_login else "",
            "state": state,
            "nonce": nonce,
            "scope": scope,
        }
        if ga is not None:
            params["_ga"] = ga

        base = urlsplit(self.settings.app_domain)
        url = SplitResult(
            base.scheme, base.netloc, self.settings.outbound_path, urlencode(params), ""
        )
        if return_url_object:
            return url
        return url.geturl()

    async def generate_outbound_redirect_url(
        self,
        back_to_path: str = "",
        policy_name: str = "",
        force_login: Union[bool, str, None] = False,
        journey: str = "",
        ga: Optional[str] = None,
        *,
        state: str = "",
        state_cache_data: Optional[Mapping[str, Any]] = None,
        redirect_uri: str = "",
        client_id: str = "",
        service_id: str = "",
        nonce: str = "",
        scope: str = "",
        prompt: str = "",
        ctx: Any = None,
    ) -> str:
        """Persist a new authorization attempt and return the provider URL."""
        settings = self.settings
        policy_name = policy_name or settings.default_policy
        journey = journey or settings.default_journey
        state = state or str(uuid.uuid4())
        redirect_uri = redirect_uri or settings.redirect_uri_fqdn
        service_id = service_id or settings.service_id or ""
        client_id = client_id or settings.client_id or ""
        scope = scope or settings.default_scope
        forced = _is_forced(force_login)
        nonce = nonce or None

        code_verifier, code_challenge = generate_pkce_pair()

        attempt_data = {
            "state_key": state_key(state),
            "policy_name": policy_name,
            "force_login": forced,
            "back_to_path": back_to_path,
            "journey": journey,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_verifier": code_verifier,
        }
        # caller-supplied fields win on overlap; camelCase keys are applied
        # after the generated ones so they also win
        attempt = AuthorizationAttempt.from_dict(
            {**attempt_data, **dict(state_cache_data or {})}
        )

        await self.state_store.begin(state, attempt, ctx)

        client = await self.client_provider.get_client(policy_name)
        authorization_url = client.authorization_url(
            redirect_uri=redirect_uri,
            scope=scope,
            state=state,
            prompt="login" if forced else (prompt or None),
            response_type="code",
            response_mode="form_post",
            client_id=client_id,
            code_challenge=attempt.code_challenge,
            code_challenge_method="S256",
            policyName=policy_name,
            journey=journey,
            serviceId=service_id,
            nonce=attempt.nonce,
            _ga=ga,
        )
        logger.info(
            "outbound_redirect_built",
            policy=policy_name,
            journey=journey,
            force_login=forced,
        )
        return authorization_url
