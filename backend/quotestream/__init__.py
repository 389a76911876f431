"""Real-time market data stream client.

Public API:
    MarketStreamClient    - Shared, auto-reconnecting stream connection
    MarketEvent           - Immutable trade / quote event
    ConnectionState       - Lifecycle state of the upstream connection
    StreamSettings        - Credentials and reconnect policy (from_env())
    create_market_stream  - Factory reading settings from the environment
    connect_market_stream - Factory that also starts connecting
    create_stream_router  - FastAPI router factory for the SSE endpoint
"""

from .client import MarketStreamClient
from .config import StreamSettings
from .exceptions import (
    ClientClosedError,
    ConfigurationError,
    QuoteStreamError,
    ReconnectExhaustedError,
)
from .factory import connect_market_stream, create_market_stream
from .models import ConnectionState, MarketEvent
from .stream import create_stream_router

__all__ = [
    "MarketStreamClient",
    "MarketEvent",
    "ConnectionState",
    "StreamSettings",
    "QuoteStreamError",
    "ConfigurationError",
    "ClientClosedError",
    "ReconnectExhaustedError",
    "create_market_stream",
    "connect_market_stream",
    "create_stream_router",
]
