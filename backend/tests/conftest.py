"""Pytest configuration and fixtures."""

import logging

import pytest

from quotestream.config import StreamSettings


@pytest.fixture
def settings() -> StreamSettings:
    """Settings with fake credentials and the default 1s backoff base."""
    return StreamSettings(
        api_key_id="test-key",
        api_secret_key="test-secret",
        url="wss://example.test/v2/iex",
    )


@pytest.fixture(autouse=True)
def _debug_logging(caplog):
    """Capture quotestream logs at DEBUG so tests can assert on them."""
    caplog.set_level(logging.DEBUG, logger="quotestream")
    yield
