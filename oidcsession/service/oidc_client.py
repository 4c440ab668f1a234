from __future__ import annotations

import functools
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx
from authlib.common.urls import add_params_to_uri
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.jose import JsonWebKey, jwt
from authlib.jose.errors import JoseError

from oidcsession.config import Settings
from oidcsession.logging import get_logger
from oidcsession.service.errors import (
    AuthorizationRejectedError,
    ProviderRefreshError,
    ProviderResolutionError,
)
from oidcsession.storage.models import Claims, TokenSet

logger = get_logger(__name__)


class OIDCClient(Protocol):
    """Capability exposed by the underlying OIDC library for one policy."""

    def authorization_url(self, **params: Any) -> str: ...

    async def exchange_code(
        self,
        *,
        code: str,
        redirect_uri: str,
        code_verifier: str,
        nonce: Optional[str] = None,
    ) -> TokenSet: ...

    async def refresh(self, refresh_token: str) -> TokenSet: ...


class ClientProvider(Protocol):
    async def get_client(self, policy_name: str) -> OIDCClient: ...


class StaticClientProvider:
    """Clients registered up front by the host, one per policy name."""

    def __init__(
        self, clients: Mapping[str, OIDCClient], *, default: Optional[OIDCClient] = None
    ) -> None:
        self.clients = dict(clients)
        self.default = default

    async def get_client(self, policy_name: str) -> OIDCClient:
        client = self.clients.get(policy_name or "") or self.default
        if client is None:
            raise ProviderResolutionError(
                f"no OIDC client configured for policy {policy_name!r}",
                detail={"policy_name": policy_name},
            )
        return client


def _token_set_from_response(
    token: Mapping[str, Any], claims: Any
) -> TokenSet:
    return TokenSet.from_dict({**dict(token), "claims": claims})


class AuthlibClient:
    """OIDC client for one provider policy, backed by Authlib.

    Authlib performs the code exchange, refresh and id token verification;
    this class only adapts it to the :class:`OIDCClient` shape.
    """

    def __init__(
        self,
        metadata: Mapping[str, Any],
        jwks: Mapping[str, Any],
        *,
        client_id: str,
        client_secret: Optional[str],
        timeout: float = 10.0,
        http_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.metadata = dict(metadata)
        self.jwks = dict(jwks)
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        # extra httpx client options, e.g. a transport
        self.http_options = dict(http_options or {})

    @property
    def token_endpoint(self) -> str:
        return self.metadata["token_endpoint"]

    def _oauth_client(self, **kwargs: Any) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            timeout=self.timeout,
            **self.http_options,
            **kwargs,
        )

    def authorization_url(self, **params: Any) -> str:
        query = [(k, str(v)) for k, v in params.items() if v not in (None, "")]
        return add_params_to_uri(self.metadata["authorization_endpoint"], query)

    def decode_claims(self, id_token: str, nonce: Optional[str] = None) -> Claims:
        options: Dict[str, Any] = {
            "iss": {"essential": True, "value": self.metadata.get("issuer")},
            "aud": {"essential": True, "value": self.client_id},
        }
        if nonce:
            options["nonce"] = {"essential": True, "value": nonce}
        try:
            claims = jwt.decode(
                id_token, JsonWebKey.import_key_set(self.jwks), claims_options=options
            )
            claims.validate()
        except JoseError as exc:
            logger.warning("id_token_rejected", error=str(exc))
            raise AuthorizationRejectedError(
                "id token failed validation", detail={"reason": exc.error}
            ) from exc
        return dict(claims)

    def _lazy_claims(self, token: Mapping[str, Any], nonce: Optional[str]):
        id_token = token.get("id_token")
        if not id_token:
            return None
        return functools.partial(self.decode_claims, id_token, nonce)

    async def exchange_code(
        self,
        *,
        code: str,
        redirect_uri: str,
        code_verifier: str,
        nonce: Optional[str] = None,
    ) -> TokenSet:
        async with self._oauth_client(redirect_uri=redirect_uri) as client:
            try:
                token = await client.fetch_token(
                    self.token_endpoint,
                    grant_type="authorization_code",
                    code=code,
                    code_verifier=code_verifier,
                )
            except Exception as exc:
                logger.warning("code_exchange_failed", error=str(exc))
                raise AuthorizationRejectedError(
                    "authorization code exchange failed",
                    detail={"error_type": type(exc).__name__},
                ) from exc
        return _token_set_from_response(token, self._lazy_claims(token, nonce))

    async def refresh(self, refresh_token: str) -> TokenSet:
        async with self._oauth_client() as client:
            try:
                token = await client.refresh_token(
                    self.token_endpoint, refresh_token=refresh_token
                )
            except Exception as exc:
                raise ProviderRefreshError(
                    "token refresh failed",
                    detail={"error_type": type(exc).__name__},
                ) from exc
        return _token_set_from_response(token, self._lazy_claims(token, None))


class AuthlibClientProvider:
    """Resolves an :class:`AuthlibClient` per policy from OpenID discovery.

    ``settings.identity_app_url`` is the discovery document URL; a ``{policy}``
    placeholder is replaced with the policy name. Documents are cached per
    policy for the life of the provider.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http_client_factory=httpx.AsyncClient,
        timeout: float = 10.0,
    ) -> None:
        self.settings = settings
        self._http_client_factory = http_client_factory
        self.timeout = timeout
        self._clients: Dict[str, AuthlibClient] = {}

    def _discovery_url(self, policy_name: str) -> str:
        template = self.settings.identity_app_url
        if not template:
            raise ProviderResolutionError("IDENTITY_APP_URL is not configured")
        return template.replace("{policy}", policy_name or "")

    async def get_client(self, policy_name: str) -> OIDCClient:
        cached = self._clients.get(policy_name)
        if cached is not None:
            return cached
        if not self.settings.client_id:
            raise ProviderResolutionError("CLIENT_ID is not configured")

        url = self._discovery_url(policy_name)
        try:
            async with self._http_client_factory(timeout=self.timeout) as http:
                response = await http.get(url)
                response.raise_for_status()
                metadata = response.json()
                jwks_response = await http.get(metadata["jwks_uri"])
                jwks_response.raise_for_status()
                jwks = jwks_response.json()
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error(
                "oidc_discovery_failed",
                policy=policy_name,
                url=url,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ProviderResolutionError(
                f"could not resolve OIDC client for policy {policy_name!r}",
                detail={"policy_name": policy_name},
            ) from exc

        client = AuthlibClient(
            metadata,
            jwks,
            client_id=self.settings.client_id,
            client_secret=self.settings.client_secret,
            timeout=self.timeout,
        )
        self._clients[policy_name] = client
        logger.info("oidc_client_resolved", policy=policy_name, issuer=metadata.get("issuer"))
        return client
