"""
Root conftest for tests.

This ensures:
1. Every test sees a known BFF configuration in the environment
2. The cached settings singleton never leaks between tests
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from pydantic import SecretStr

from config.settings import Settings, get_settings
from libs.common.logging.formatter import JSONFormatter

TEST_SECRET = "test-bff-secret-0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_BFF_ID = "nextjs-bff-prod"
TEST_UPSTREAM_URL = "http://upstream.test"
FIXED_NOW = 1_700_000_000


@pytest.fixture(autouse=True)
def bff_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Pin BFF settings in the environment and reset the settings cache."""
    monkeypatch.setenv("BFF_HMAC_SECRET", TEST_SECRET)
    monkeypatch.setenv("BFF_ID", TEST_BFF_ID)
    monkeypatch.setenv("UPSTREAM_API_URL", TEST_UPSTREAM_URL)
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.delenv("TRUSTED_PROXY_IPS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def bff_secret() -> str:
    """The shared HMAC secret configured for tests."""
    return TEST_SECRET


@pytest.fixture()
def settings() -> Settings:
    """Explicit settings for building services under test."""
    return Settings(
        bff_hmac_secret=SecretStr(TEST_SECRET),
        bff_id=TEST_BFF_ID,
        upstream_api_url=TEST_UPSTREAM_URL,
        bff_timeout_ms=2000,
        environment="test",
    )


@pytest.fixture()
def fixed_clock() -> int:
    """A fixed 'now' in epoch seconds for signer/validator clocks."""
    return FIXED_NOW


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """Undo configure_logging() calls made by service lifespans under test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, JSONFormatter):
            root.removeHandler(handler)
    root.setLevel(level)
