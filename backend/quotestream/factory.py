"""Factory for creating market stream clients."""

from __future__ import annotations

import logging
from typing import Any

from .client import MarketStreamClient
from .config import StreamSettings

logger = logging.getLogger(__name__)


def create_market_stream(settings: StreamSettings | None = None, **kwargs: Any) -> MarketStreamClient:
    """Create a client, reading settings from the environment when not given.

    - ALPACA_API_KEY_ID / ALPACA_API_SECRET_KEY must be set (ConfigurationError otherwise)
    - ALPACA_STREAM_URL selects the feed, IEX by default

    Returns an unstarted client. Caller must call client.start() inside an
    event loop, or use connect_market_stream().
    """
    if settings is None:
        settings = StreamSettings.from_env()

    logger.info("Market data stream: %s", settings.url)
    return MarketStreamClient(settings, **kwargs)


async def connect_market_stream(settings: StreamSettings | None = None, **kwargs: Any) -> MarketStreamClient:
    """Create a client and start connecting. Does not wait for authentication."""
    client = create_market_stream(settings, **kwargs)
    client.start()
    return client
