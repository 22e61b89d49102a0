import os

# litellm fetches its model cost map over the network at import time and
# deadlocks when that fails; use the bundled copy instead.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import pytest
from pathlib import Path
from unittest.mock import Mock

from httpx import AsyncClient, ASGITransport

from somnus.core import config as config_module
from somnus.core.config import (
    SomnusConfig,
    AdminConfig,
    LLMConfig,
    LoggingConfig,
    SessionConfig,
)
from somnus.core.database import DreamStore
from somnus.core.system_logger import SystemLogger
from somnus.interface.server.app import create_app

TEST_SECRET = "test-secret-that-is-long-enough-for-hs256-signing"
ADMIN_USERNAME = "moonkeeper"
ADMIN_PASSWORD = "lunar-pass-123"


def make_config(api_keys=None, **overrides) -> SomnusConfig:
    return SomnusConfig(
        llm=LLMConfig(api_keys=api_keys or []),
        admin=AdminConfig(username=ADMIN_USERNAME, password=ADMIN_PASSWORD),
        session=SessionConfig(secret=TEST_SECRET),
        logging=LoggingConfig(enabled=False),
        **overrides,
    )


def completion(content):
    """A litellm-shaped response carrying ``content``."""
    response = Mock()
    response.choices = [Mock(message=Mock(content=content, role="assistant"))]
    return response


class ProviderError(Exception):
    """Stands in for a litellm exception carrying an HTTP status."""

    def __init__(self, status_code, message="provider error"):
        super().__init__(message)
        self.status_code = status_code


@pytest.fixture(autouse=True)
def reset_globals(monkeypatch, tmp_path):
    """
    Keeps every test away from the real ~/.somnus and from the deployment
    environment variables.
    """
    for name in config_module.ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module.ConfigLoader, "DEFAULT_CONFIG_DIR", tmp_path / ".somnus")
    config_module._params = None
    SystemLogger.reset()
    SystemLogger.get_instance(make_config())
    yield
    config_module._params = None
    SystemLogger.reset()


@pytest.fixture
def test_config():
    return make_config()


@pytest.fixture
async def store(tmp_path):
    async with DreamStore(db_path=tmp_path / "test_somnus.db") as dream_store:
        await dream_store.init_db()
        yield dream_store


@pytest.fixture
async def app(test_config, store):
    return create_app(test_config, store=store)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
