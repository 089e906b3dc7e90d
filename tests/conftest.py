"""
Shared test fixtures: a frozen clock, in-memory and failing KV stores,
scripted provider adapters, and a TestClient wired to a test gateway.

No test makes a real provider or Redis call.
"""

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from ai_engine.app.config import GatewaySettings
from ai_engine.app.errors import StoreUnavailableError
from ai_engine.app.kv_store import InMemoryKVStore
from ai_engine.app.main import app, build_gateway, get_gateway
from ai_engine.providers.adapters import ProviderAdapter, ProviderResponse, TokenUsage
from ai_engine.providers.availability import CredentialSnapshot
from ai_engine.providers.dispatcher import Dispatcher

TEST_TOKEN = "test-token"

ALL_SECRETS = {
    "ANTHROPIC_API_KEY": "sk-ant-test",
    "OPENAI_API_KEY": "sk-openai-test",
    "GOOGLE_AI_API_KEY": "google-test",
    "MISTRAL_API_KEY": "mistral-test",
    "DEEPSEEK_API_KEY": "deepseek-test",
    "GROQ_API_KEY": "gsk-test",
}


# ---------------------------------------------------------------------------
# Clock and stores
# ---------------------------------------------------------------------------

class FrozenClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FailingStore:
    """KV store whose backend is down."""

    async def get(self, key):
        raise StoreUnavailableError("store down")

    async def put(self, key, value, expiration_ttl):
        raise StoreUnavailableError("store down")


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 14, 10, 30, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryKVStore()


@pytest.fixture
def failing_store():
    return FailingStore()


# ---------------------------------------------------------------------------
# Provider adapters
# ---------------------------------------------------------------------------

class FakeAdapter(ProviderAdapter):
    """Scripted adapter: returns ``text`` or raises ``error``, recording every call."""

    def __init__(self, provider_id, text="ok", error=None, delay_s=0.0, tokens=None, embeddings=None):
        super().__init__(timeout_s=1.0)
        self.provider_id = provider_id
        self.text = text
        self.error = error
        self.delay_s = delay_s
        self.tokens = tokens or TokenUsage(input=1000, output=500)
        self.embeddings = embeddings
        self.calls = []

    def run(self, request, model, snapshot):
        self.calls.append(model.key)
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return ProviderResponse(
            provider=self.provider_id,
            model=model.id,
            text=self.text,
            tokens_used=self.tokens,
            stop_reason="end_turn",
            embeddings=self.embeddings,
        )


@pytest.fixture
def fake_adapters():
    """One succeeding FakeAdapter per provider id."""
    providers = ["claude", "openai", "gemini", "mistral", "deepseek", "groq", "cloudflare"]
    return {pid: FakeAdapter(pid, text=f"{pid} says hi") for pid in providers}


@pytest.fixture
def full_snapshot():
    """Every provider configured, including the free-tier binding."""
    return CredentialSnapshot(secrets=ALL_SECRETS, ai_binding=MagicMock())


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

def make_settings(**overrides) -> GatewaySettings:
    values = {
        "ai_engine_token": TEST_TOKEN,
        "anthropic_api_key": ALL_SECRETS["ANTHROPIC_API_KEY"],
        "openai_api_key": ALL_SECRETS["OPENAI_API_KEY"],
        "cloudflare_account_id": "acct-test",
        "cloudflare_api_token": "cf-test",
        "kv_backend": "memory",
    }
    values.update(overrides)
    return GatewaySettings(**values)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def make_client(fake_adapters):
    """
    Build a TestClient around a test gateway.

    Returns (client, gateway). The gateway's dispatcher uses ``fake_adapters``
    (or the ``adapters`` argument) instead of real provider integrations.
    """
    def _make(adapters=None, **settings_overrides):
        gateway = build_gateway(make_settings(**settings_overrides), store=InMemoryKVStore())
        gateway.dispatcher = Dispatcher(
            gateway.snapshot,
            registry=gateway.registry,
            adapters=adapters if adapters is not None else fake_adapters,
            timeout_s=1.0,
        )
        app.dependency_overrides[get_gateway] = lambda: gateway
        return TestClient(app), gateway

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    """TestClient with default test settings."""
    c, _ = make_client()
    return c


@pytest.fixture
def adapter_factory():
    """Build a FakeAdapter: ``adapter_factory("claude", error=...)``."""
    return FakeAdapter


@pytest.fixture
def settings_factory():
    return make_settings
