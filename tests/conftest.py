import asyncio
import inspect
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("COOKIE_PASSWORD", "test-cookie-password-for-testing-only-0123456789")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from oidcsession.config import Settings, reset_settings_cache  # noqa: E402
from oidcsession.service.oidc_client import StaticClientProvider  # noqa: E402
from oidcsession.service.runtime import IdentityService  # noqa: E402
from oidcsession.storage.memory import MemoryCache  # noqa: E402
from oidcsession.storage.models import TokenSet  # noqa: E402

APP_DOMAIN = "https://app.example"
CLIENT_ID = "3f1a2b4c-5d6e-4f70-8a9b-0c1d2e3f4a5b"
SERVICE_ID = "9e8d7c6b-5a49-4382-9170-6f5e4d3c2b1a"


class FakeOIDCClient:
    """Records calls; refresh results are consumed in order (exceptions are raised)."""

    def __init__(self, policy: str = "policyA", refresh_results: Optional[List[Any]] = None):
        self.policy = policy
        self.authorization_calls: List[Dict[str, Any]] = []
        self.exchange_calls: List[Dict[str, Any]] = []
        self.refresh_calls: List[str] = []
        self.refresh_results = list(refresh_results or [])
        self.claims_calls = 0
        self.exchange_claims: Dict[str, Any] = {
            "sub": "user-1",
            "tfp": policy,
            "exp": int(time.time()) + 3600,
            "contactId": "contact-1",
        }

    def authorization_url(self, **params):
        self.authorization_calls.append(params)
        query = {k: v for k, v in params.items() if v not in (None, "")}
        return f"https://idp.example/{self.policy}/authorize?{urlencode(query)}"

    def _lazy(self, claims):
        def compute():
            self.claims_calls += 1
            return dict(claims)

        return compute

    async def exchange_code(self, *, code, redirect_uri, code_verifier, nonce=None):
        self.exchange_calls.append(
            {
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
                "nonce": nonce,
            }
        )
        return TokenSet(
            access_token="access-1",
            refresh_token="refresh-1",
            id_token="id-1",
            token_type="Bearer",
            claims=self._lazy(self.exchange_claims),
        )

    async def refresh(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        result = self.refresh_results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_settings(**overrides) -> Settings:
    values = dict(
        app_domain=APP_DOMAIN,
        client_id=CLIENT_ID,
        service_id=SERVICE_ID,
        client_secret="client-secret",
        cookie_password="test-cookie-password-for-testing-only-0123456789",
        default_policy="policyA",
        default_journey="journeyA",
        retry_delay_multiplier_secs=1.5,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def reset_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def fake_client():
    return FakeOIDCClient("policyA")


@pytest.fixture
def make_fake_client():
    return FakeOIDCClient


@pytest.fixture
def client_provider(fake_client):
    return StaticClientProvider({"policyA": fake_client})


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def memory_cache():
    return MemoryCache(3600, segment="idm")


@pytest.fixture
def identity(settings, memory_cache, client_provider, sleeper):
    return IdentityService(
        settings,
        cache_backend=memory_cache,
        client_provider=client_provider,
        sleep=sleeper,
    )


@pytest.fixture
def new_state():
    return lambda: str(uuid.uuid4())


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
