"""Tests for the Authlib-backed OIDC client and discovery provider."""

import json
import time
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from authlib.jose import JsonWebKey, jwt

from oidcsession.service.errors import (
    AuthorizationRejectedError,
    ProviderRefreshError,
    ProviderResolutionError,
)
from oidcsession.service.oidc_client import AuthlibClient, AuthlibClientProvider

ISSUER = "https://idp.example/policyA/v2.0/"
CLIENT_ID = "3f1a2b4c-5d6e-4f70-8a9b-0c1d2e3f4a5b"
DISCOVERY_URL = "https://idp.example/{policy}/v2.0/.well-known/openid-configuration"
METADATA = {
    "issuer": ISSUER,
    "authorization_endpoint": "https://idp.example/policyA/authorize",
    "token_endpoint": "https://idp.example/policyA/token",
    "jwks_uri": "https://idp.example/policyA/keys",
}


@pytest.fixture(scope="module")
def signing_key():
    return JsonWebKey.generate_key("RSA", 2048, is_private=True, options={"kid": "k1"})


@pytest.fixture(scope="module")
def jwks(signing_key):
    public = signing_key.as_dict(is_private=False)
    public["kid"] = "k1"
    return {"keys": [public]}


def make_id_token(signing_key, **overrides):
    now = int(time.time())
    payload = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "user-1",
        "iat": now,
        "exp": now + 600,
        "tfp": "policyA",
    }
    payload.update(overrides)
    return jwt.encode({"alg": "RS256", "kid": "k1"}, payload, signing_key).decode()


def make_client(jwks, handler=None):
    options = {}
    if handler is not None:
        options["transport"] = httpx.MockTransport(handler)
    return AuthlibClient(
        METADATA,
        jwks,
        client_id=CLIENT_ID,
        client_secret="secret",
        http_options=options,
    )


class TestAuthorizationUrl:
    def test_empty_params_are_omitted(self, jwks):
        client = make_client(jwks)
        url = client.authorization_url(
            state="s-1", prompt=None, nonce="", response_type="code", _ga=None
        )
        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == METADATA["authorization_endpoint"]
        assert parse_qs(parts.query) == {"state": ["s-1"], "response_type": ["code"]}


class TestDecodeClaims:
    def test_valid_token(self, signing_key, jwks):
        client = make_client(jwks)
        claims = client.decode_claims(make_id_token(signing_key, nonce="n-1"), "n-1")
        assert claims["sub"] == "user-1"
        assert claims["tfp"] == "policyA"

    def test_expired_token_rejected(self, signing_key, jwks):
        client = make_client(jwks)
        token = make_id_token(signing_key, iat=1000, exp=2000)
        with pytest.raises(AuthorizationRejectedError):
            client.decode_claims(token)

    def test_wrong_audience_rejected(self, signing_key, jwks):
        client = make_client(jwks)
        with pytest.raises(AuthorizationRejectedError):
            client.decode_claims(make_id_token(signing_key, aud="someone-else"))

    def test_nonce_mismatch_rejected(self, signing_key, jwks):
        client = make_client(jwks)
        token = make_id_token(signing_key, nonce="other")
        with pytest.raises(AuthorizationRejectedError):
            client.decode_claims(token, "n-1")


class TestTokenEndpoint:
    async def test_exchange_code_returns_lazy_claims(self, signing_key, jwks):
        id_token = make_id_token(signing_key, nonce="n-1")
        seen = {}

        def handler(request):
            seen.update(parse_qs(request.content.decode()))
            return httpx.Response(
                200,
                json={
                    "access_token": "access-1",
                    "refresh_token": "refresh-1",
                    "id_token": id_token,
                    "token_type": "Bearer",
                    "expires_in": 3600,
                },
            )

        client = make_client(jwks, handler)
        token_set = await client.exchange_code(
            code="code-1",
            redirect_uri="https://app.example/login/return",
            code_verifier="verifier-1",
            nonce="n-1",
        )

        assert seen["code"] == ["code-1"]
        assert seen["code_verifier"] == ["verifier-1"]
        assert seen["grant_type"] == ["authorization_code"]
        assert seen["redirect_uri"] == ["https://app.example/login/return"]
        assert token_set.access_token == "access-1"
        assert token_set.refresh_token == "refresh-1"
        assert callable(token_set.claims)
        assert token_set.claims()["sub"] == "user-1"

    async def test_exchange_error_is_rejected(self, jwks):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        client = make_client(jwks, handler)
        with pytest.raises(AuthorizationRejectedError):
            await client.exchange_code(
                code="bad", redirect_uri="https://app.example/cb", code_verifier="v"
            )

    async def test_refresh_without_id_token_has_no_claims(self, jwks):
        def handler(request):
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["refresh_token"]
            assert form["refresh_token"] == ["refresh-1"]
            return httpx.Response(
                200,
                json={
                    "access_token": "access-2",
                    "refresh_token": "refresh-2",
                    "token_type": "Bearer",
                },
            )

        client = make_client(jwks, handler)
        token_set = await client.refresh("refresh-1")

        assert token_set.access_token == "access-2"
        assert token_set.refresh_token == "refresh-2"
        assert token_set.claims is None

    async def test_refresh_error_raises_provider_refresh_error(self, jwks):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        client = make_client(jwks, handler)
        with pytest.raises(ProviderRefreshError):
            await client.refresh("expired")


class TestAuthlibClientProvider:
    def _factory(self, handler):
        transport = httpx.MockTransport(handler)

        def factory(**kwargs):
            return httpx.AsyncClient(transport=transport, **kwargs)

        return factory

    async def test_discovery_resolves_and_caches_per_policy(self, jwks, settings_factory):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            if request.url.path.endswith("/keys"):
                return httpx.Response(200, json=jwks)
            return httpx.Response(200, content=json.dumps(METADATA))

        provider = AuthlibClientProvider(
            settings_factory(identity_app_url=DISCOVERY_URL),
            http_client_factory=self._factory(handler),
        )

        client = await provider.get_client("policyA")
        again = await provider.get_client("policyA")

        assert again is client
        assert client.token_endpoint == METADATA["token_endpoint"]
        assert requested == [
            "https://idp.example/policyA/v2.0/.well-known/openid-configuration",
            METADATA["jwks_uri"],
        ]

    async def test_discovery_failure_raises(self, settings_factory):
        def handler(request):
            return httpx.Response(404)

        provider = AuthlibClientProvider(
            settings_factory(identity_app_url=DISCOVERY_URL),
            http_client_factory=self._factory(handler),
        )
        with pytest.raises(ProviderResolutionError):
            await provider.get_client("policyA")

    async def test_missing_discovery_url_raises(self, settings_factory):
        provider = AuthlibClientProvider(settings_factory(identity_app_url=None))
        with pytest.raises(ProviderResolutionError):
            await provider.get_client("policyA")
