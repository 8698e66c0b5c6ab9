"""
Shared test fixtures for M2M API client tests.

Provides configuration, a fake backend on httpx.MockTransport, and
process-wide token store isolation.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from m2m_api_client.config import CacheConfig, ClientConfig
from m2m_api_client.core.token_store import reset_default_token_store

from .backend_helpers import AUTH_URL, SERVICE_URL, FakeBackend, make_backend, make_config


@pytest.fixture
def fresh_default_store() -> Iterator[None]:
    """Give a test a fresh process-wide token store."""
    reset_default_token_store()
    yield
    reset_default_token_store()


@pytest.fixture
def base_config() -> ClientConfig:
    """Provide a basic client configuration for testing."""
    return make_config()


@pytest.fixture
def cache_config() -> CacheConfig:
    """Provide cache configuration for testing."""
    return CacheConfig(token_buffer=60)


@pytest.fixture
def backend() -> FakeBackend:
    """Provide a fake backend issuing tok1 then tok2 then tok3."""
    return make_backend("tok1", "tok2", "tok3")


@pytest.fixture
def env_vars(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Provide a complete set of required environment variables."""
    values = {
        "AUTH_URL": AUTH_URL,
        "EXTERNAL_SERVICE_URL": SERVICE_URL,
        "CLIENT_ID": "ID",
        "CLIENT_SECRET": "SECRET",
        "GRANT_TYPE": "GRANT",
    }
    for name, value in values.items():
        monkeypatch.setenv(name, value)
    for name in ("REQUEST_TIMEOUT", "TOKEN_BUFFER_SECONDS", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return values
