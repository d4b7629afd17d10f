"""
Pytest configuration and shared fixtures.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from braidarr.config import ApiKeyCredential, BasicCredential, ProviderConnectionConfig
from braidarr.retry import RetryHandler, RetryPolicy
from braidarr.transport import HttpResponse

API_KEY = "0123456789abcdef0123456789abcdef"
TORRENT_HASH = "a" * 40
OTHER_HASH = "b" * 40


# ============================================================================
# HTTP helpers
# ============================================================================

def make_response(body="", status=200, headers=None, cookies=None):
    """Build an HttpResponse; dict/list bodies are JSON encoded."""
    import json

    text = body if isinstance(body, str) else json.dumps(body)
    return HttpResponse(
        status=status,
        reason="OK" if status < 400 else "Error",
        text=text,
        headers=headers or {},
        cookies=cookies or [],
    )


def make_http_error(status, headers=None):
    """Build the error the transport raises for a non-2xx reply."""
    return aiohttp.ClientResponseError(
        request_info=MagicMock(),
        history=(),
        status=status,
        message="Error",
        headers=headers,
    )


class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ============================================================================
# Retry Fixtures
# ============================================================================

@pytest.fixture
def fast_policy():
    """Three retries with deterministic delays."""
    return RetryPolicy(max_retries=3, base_delay=1.0, max_delay=10.0, jitter=False)


@pytest.fixture
def retry_handler(fast_policy):
    return RetryHandler(fast_policy)


@pytest.fixture
def no_sleep():
    """Replace backoff sleeps with an AsyncMock that records the delays."""
    with patch("braidarr.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# Connection Config Fixtures
# ============================================================================

@pytest.fixture
def sonarr_config():
    return ProviderConnectionConfig(
        base_url="http://sonarr.local:8989/",
        credential=ApiKeyCredential(API_KEY),
        name="sonarr-main",
    )


@pytest.fixture
def radarr_config():
    return ProviderConnectionConfig(
        base_url="http://radarr.local:7878",
        credential=ApiKeyCredential(API_KEY),
    )


@pytest.fixture
def prowlarr_config():
    return ProviderConnectionConfig(
        base_url="http://prowlarr.local:9696",
        credential=ApiKeyCredential(API_KEY),
    )


@pytest.fixture
def qbit_config():
    return ProviderConnectionConfig(
        base_url="http://qbit.local:8080",
        credential=BasicCredential("admin", "adminadmin"),
    )


@pytest.fixture
def transmission_config():
    return ProviderConnectionConfig(
        base_url="http://transmission.local:9091",
        credential=BasicCredential("user", "pass"),
    )


# ============================================================================
# Logging Fixtures
# ============================================================================

@pytest.fixture
def clean_logging():
    """Clean up logging handlers before and after test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level

    yield

    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in original_handlers:
        root.addHandler(handler)
    root.setLevel(original_level)
