"""Public client for the market data stream."""

from __future__ import annotations

import logging
import threading

from .config import StreamSettings
from .connection import ConnectionManager, Connector, FatalHandler, Sleeper
from .dispatcher import Dispatcher
from .exceptions import ReconnectExhaustedError
from .models import ConnectionState
from .registry import Consumer, SubscriptionRegistry

logger = logging.getLogger(__name__)


class MarketStreamClient:
    """One multiplexed market data connection shared by many consumers.

    Lifecycle:
        client = MarketStreamClient(settings)
        client.start()                       # inside a running event loop
        client.subscribe("AAPL", on_event)   # any thread, never blocks
        client.unsubscribe("AAPL", on_event)
        await client.close()                 # final; build a new client to reuse

    Consumers are called on the event loop thread with a MarketEvent. Symbols
    requested before the connection is authenticated are queued and sent as
    one subscribe frame once it is; after a reconnect every symbol that still
    has a consumer is subscribed again automatically.
    """

    def __init__(
        self,
        settings: StreamSettings,
        *,
        connector: Connector | None = None,
        sleep: Sleeper | None = None,
        on_fatal: FatalHandler | None = None,
    ) -> None:
        self._settings = settings
        lock = threading.Lock()
        self._registry = SubscriptionRegistry()
        self._dispatcher = Dispatcher(self._registry, lock)
        self._connection = ConnectionManager(
            settings,
            self._registry,
            self._dispatcher,
            lock,
            connector=connector,
            sleep=sleep,
            on_fatal=on_fatal,
        )
        self._lock = lock

    async def __aenter__(self) -> MarketStreamClient:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def start(self) -> None:
        """Begin connecting in the background. No-op if already running."""
        self._connection.start()

    def subscribe(self, symbol: str, consumer: Consumer) -> None:
        """Register `consumer` for events on `symbol`.

        Raises ClientClosedError once the client has been closed.
        """
        if not callable(consumer):
            raise TypeError(f"consumer must be callable, got {type(consumer).__name__}")
        self._connection.add_interest(_normalize(symbol), consumer)

    def unsubscribe(self, symbol: str, consumer: Consumer) -> None:
        """Remove exactly this consumer from `symbol`. Unknown pairs are ignored."""
        self._connection.remove_interest(_normalize(symbol), consumer)

    async def close(self) -> None:
        await self._connection.close()

    def reconnect(self) -> None:
        """Restart after the reconnect budget was exhausted."""
        self._connection.reconnect()

    @property
    def settings(self) -> StreamSettings:
        return self._settings

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_closed(self) -> bool:
        return self._connection.is_closed

    @property
    def fatal_error(self) -> ReconnectExhaustedError | None:
        return self._connection.fatal_error

    @property
    def symbols(self) -> list[str]:
        """Symbols with at least one registered consumer."""
        with self._lock:
            return self._registry.symbols()


def _normalize(symbol: str) -> str:
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValueError(f"symbol must be a non-empty string, got {symbol!r}")
    return symbol.upper().strip()
