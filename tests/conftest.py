"""Shared pytest fixtures for rs_api tests."""

from __future__ import annotations

import pytest

from rs_api.client import ApiClient
from rs_api.config import ClientConfig

from tests.fixtures.mock_api import MockApiService, create_mock_api_for_clouds

_ENV_VARS = (
    "RS_api_hostname",
    "RS_api_key",
    "RS_API_ACCOUNT",
    "RS_API_VERSION",
    "RS_API_TIMEOUT",
    "RS_RLL_SECRET_FILE",
    "RS_API_RETRY_MAX_ATTEMPTS",
    "RS_API_RETRY_BACKOFF_FACTOR",
)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keep the developer's config files and environment out of tests."""
    monkeypatch.setattr("rs_api.config.CONFIG_SEARCH_PATHS", [])
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def secret_file(tmp_path):
    """Factory fixture writing a RightLink10 secret file."""
    def _factory(content: str = "RS_RLL_PORT=41000\nRS_RLL_SECRET=abc123\n") -> str:
        path = tmp_path / "rll-secret"
        path.write_text(content)
        return str(path)
    return _factory


@pytest.fixture
def mock_api():
    """Empty mock API."""
    return MockApiService()


@pytest.fixture
def clouds_api():
    """Mock API pre-loaded with clouds and deployments."""
    return create_mock_api_for_clouds()


@pytest.fixture
def proxy_config():
    """Factory fixture for proxy-mode configs with an explicit host and secret."""
    def _factory(**kwargs) -> ClientConfig:
        options = {"proxy_host": "proxy.test:8080", "proxy_secret": "sekret", "rl10": True}
        options.update(kwargs)
        return ClientConfig(**options)
    return _factory


@pytest.fixture
def proxy_client(proxy_config):
    """Factory fixture for proxy clients talking to a mock API."""
    def _factory(api: MockApiService, **kwargs) -> ApiClient:
        return ApiClient.for_proxy(proxy_config(**kwargs), transport=api.get_transport())
    return _factory
