"""Tests for token set models and session persistence."""

import time

import pytest

from oidcsession.service.session_store import SessionStore, normalize_token_set
from oidcsession.storage.cache import CacheAdapter
from oidcsession.storage.memory import MemoryCache
from oidcsession.storage.models import AuthorizationAttempt, Session, TokenSet


class TestTokenSet:
    def test_from_dict_keeps_unknown_fields_in_extra(self):
        ts = TokenSet.from_dict({"access_token": "a", "session_state": "xyz"})
        assert ts.access_token == "a"
        assert ts.extra == {"session_state": "xyz"}

    def test_expires_in_becomes_expires_at(self):
        before = int(time.time())
        ts = TokenSet.from_dict({"access_token": "a", "expires_in": 300})
        assert before + 300 <= ts.expires_at <= int(time.time()) + 300
        assert "expires_in" not in ts.extra

    def test_to_dict_refuses_callable_claims(self):
        ts = TokenSet(access_token="a", claims=lambda: {"sub": "u"})
        with pytest.raises(TypeError):
            ts.to_dict()


class TestAuthorizationAttempt:
    def test_from_dict_accepts_camel_case(self):
        attempt = AuthorizationAttempt.from_dict(
            {
                "stateKey": "k",
                "codeVerifier": "v",
                "codeChallenge": "c",
                "backToPath": "/x",
                "forceLogin": True,
                "tenant": "acme",
            }
        )
        assert attempt.state_key == "k"
        assert attempt.back_to_path == "/x"
        assert attempt.force_login is True
        assert attempt.extra == {"tenant": "acme"}


class TestNormalize:
    def test_callable_claims_are_materialised(self):
        calls = []

        def compute():
            calls.append(1)
            return {"sub": "u"}

        ts = normalize_token_set(TokenSet(claims=compute))
        assert ts.claims == {"sub": "u"}
        normalize_token_set(ts)
        assert len(calls) == 1

    def test_plain_claims_unchanged(self):
        ts = normalize_token_set(TokenSet(claims={"sub": "u"}))
        assert ts.claims == {"sub": "u"}


class TestSessionExpiry:
    def test_expired_when_exp_in_past(self):
        assert Session(TokenSet(), {"exp": 100}).is_expired(now=200)

    def test_not_expired_when_exp_in_future(self):
        assert not Session(TokenSet(), {"exp": 300}).is_expired(now=200)

    def test_missing_exp_is_not_expired(self):
        assert not Session(TokenSet(), {"sub": "u"}).is_expired(now=200)

    def test_absent_claims_are_expired(self):
        assert Session(TokenSet(), None).is_expired(now=200)


class TestSessionStore:
    async def test_put_stores_plain_claims(self):
        backend = MemoryCache()
        store = SessionStore(CacheAdapter(backend), ttl_seconds=60)
        ts = TokenSet(access_token="a", refresh_token="r", claims=lambda: {"sub": "u"})

        session = await store.put("handle-1", ts)

        assert session.claims == {"sub": "u"}
        raw = await backend.get("handle-1")
        assert raw["claims"] == {"sub": "u"}
        assert raw["token_set"]["claims"] == {"sub": "u"}

    async def test_get_round_trips_session(self):
        store = SessionStore(CacheAdapter(MemoryCache()))
        await store.put("handle-1", TokenSet(access_token="a", claims={"sub": "u"}))

        session = await store.get("handle-1")

        assert session.token_set.access_token == "a"
        assert session.claims == {"sub": "u"}

    async def test_get_ignores_non_session_values(self):
        backend = MemoryCache()
        await backend.set("handle-1", "garbage")
        store = SessionStore(CacheAdapter(backend))
        assert await store.get("handle-1") is None

    async def test_drop_removes_session(self):
        store = SessionStore(CacheAdapter(MemoryCache()))
        await store.put("handle-1", TokenSet(claims={}))
        await store.drop("handle-1")
        assert await store.get("handle-1") is None
