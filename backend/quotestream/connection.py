"""Connection lifecycle for the market data WebSocket.

State machine:

    DISCONNECTED --start()/backoff elapsed--> CONNECTING
    CONNECTING   --socket open, auth sent---> AWAITING_AUTH
    AWAITING_AUTH --"authenticated"---------> AUTHENTICATED
    any          --close / error -----------> DISCONNECTED (+ reconnect)

Reconnect attempt N waits base_delay * 2 ** (N - 1). The attempt counter only
resets when a session reaches AUTHENTICATED, so a socket that opens and then
drops before auth still burns an attempt. After max_reconnect_attempts
consecutive failures the manager gives up for good.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from .codec import (
    auth_frame,
    decode_frame,
    encode_frame,
    subscribe_frame,
    unsubscribe_frame,
)
from .config import StreamSettings
from .dispatcher import Dispatcher
from .exceptions import ClientClosedError, ReconnectExhaustedError
from .models import (
    AuthConfirmed,
    ConnectionState,
    FeedError,
    MarketEvent,
    SubscriptionAck,
)
from .registry import Consumer, SubscriptionRegistry

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[Any]]
FatalHandler = Callable[[ReconnectExhaustedError], Any]


def backoff_delay(attempt: int, base_delay: float = 1.0) -> float:
    """Delay before reconnect attempt `attempt` (counted from 1)."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return base_delay * 2 ** (attempt - 1)


class ConnectionManager:
    """Owns the socket, the auth handshake, the pending set and reconnects.

    All registry, pending-set and state mutation happens under `lock`, which
    is shared with the Dispatcher. Outbound frames are pushed onto a
    per-socket queue from under the lock (via call_soon_threadsafe, so any
    thread may subscribe) and written by a single writer task, so frames
    never interleave on the wire.
    """

    def __init__(
        self,
        settings: StreamSettings,
        registry: SubscriptionRegistry,
        dispatcher: Dispatcher,
        lock: threading.Lock,
        *,
        connector: Connector | None = None,
        sleep: Sleeper | None = None,
        on_fatal: FatalHandler | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._dispatcher = dispatcher
        self._lock = lock
        self._connect = connector or websockets.connect
        self._sleep = sleep or asyncio.sleep
        self._on_fatal = on_fatal

        self._state = ConnectionState.DISCONNECTED
        self._pending: set[str] = set()
        self._attempts = 0
        self._closed = False
        self._fatal_error: ReconnectExhaustedError | None = None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None
        self._ws: Any = None
        self._outbox: asyncio.Queue | None = None

    # --- Public API ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def pending(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._pending)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fatal_error(self) -> ReconnectExhaustedError | None:
        """Set once the reconnect budget is exhausted, cleared by reconnect()."""
        return self._fatal_error

    def start(self) -> None:
        """Start connecting in the background. Must run inside an event loop.

        Returns immediately; no-op if a connection task is already running.
        """
        with self._lock:
            if self._closed:
                raise ClientClosedError("client is closed")
            if self.is_running:
                return
            self._loop = asyncio.get_running_loop()
            self._fatal_error = None
            self._state = ConnectionState.CONNECTING
            self._task = self._loop.create_task(self._run(), name="market-stream")

    def reconnect(self) -> None:
        """Manually restart after the reconnect budget ran out."""
        with self._lock:
            if self._closed:
                raise ClientClosedError("client is closed")
            if self.is_running:
                return
            self._attempts = 0
        logger.info("Manual reconnect requested")
        self.start()

    def add_interest(self, symbol: str, consumer: Consumer) -> None:
        with self._lock:
            if self._closed:
                raise ClientClosedError("client is closed", {"symbol": symbol})
            self._registry.add(symbol, consumer)

            if self._state is not ConnectionState.AUTHENTICATED:
                self._pending.add(symbol)
                logger.debug("Queued %s until authenticated", symbol)
                return

            if not self._registry.is_confirmed(symbol):
                # Optimistic: upstream has no per-symbol ack
                self._registry.mark_confirmed([symbol])
                self._enqueue(subscribe_frame([symbol]))
                logger.info("Subscribed to %s", symbol)

    def remove_interest(self, symbol: str, consumer: Consumer) -> None:
        with self._lock:
            if self._closed:
                return
            removed = self._registry.remove(symbol, consumer)
            if removed is None:
                return
            self._pending.discard(symbol)
            if self._state is ConnectionState.AUTHENTICATED and removed.confirmed:
                self._enqueue(unsubscribe_frame([symbol]))
                logger.info("Unsubscribed from %s", symbol)

    async def close(self) -> None:
        """Stop for good: cancel reconnects, drop the socket, forget interest.

        No unsubscribe frames are sent. Safe to call multiple times.
        """
        with self._lock:
            already_closed = self._closed
            self._closed = True
            self._registry.clear()
            self._pending.clear()
            self._state = ConnectionState.DISCONNECTED
            self._outbox = None
            task, self._task = self._task, None
            ws, self._ws = self._ws, None

        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._dispatcher.cancel_pending()
        if ws is not None:
            await self._close_socket(ws)
        if not already_closed:
            logger.info("Market data stream closed")

    # --- Internal ---

    async def _run(self) -> None:
        """Supervisor loop: run a session, back off, repeat until closed or out of attempts."""
        max_attempts = self._settings.max_reconnect_attempts
        while True:
            await self._run_session()

            with self._lock:
                if self._closed:
                    return
                exhausted = self._attempts >= max_attempts
                if not exhausted:
                    self._attempts += 1
                attempt = self._attempts

            if exhausted:
                self._give_up()
                return

            delay = backoff_delay(attempt, self._settings.reconnect_base_delay)
            logger.info(
                "Reconnecting to %s (%d/%d) in %.1fs",
                self._settings.url,
                attempt,
                max_attempts,
                delay,
            )
            await self._sleep(delay)

    async def _run_session(self) -> None:
        """One connection: open, authenticate, read until the socket goes away."""
        settings = self._settings
        with self._lock:
            if self._closed:
                return
            self._state = ConnectionState.CONNECTING

        try:
            ws = await self._connect(
                settings.url,
                ping_interval=settings.ping_interval,
                ping_timeout=settings.ping_timeout,
                open_timeout=settings.open_timeout,
            )
        except Exception as e:
            logger.warning("Could not connect to %s: %s", settings.url, e)
            self._handle_disconnect()
            return

        outbox: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._ws = ws
            self._outbox = outbox
            self._state = ConnectionState.AWAITING_AUTH

        writer: asyncio.Task | None = None
        try:
            logger.info("Connected to %s, authenticating", settings.url)
            await ws.send(encode_frame(auth_frame(settings.api_key_id, settings.api_secret_key)))
            writer = asyncio.create_task(self._write_loop(ws, outbox), name="market-stream-writer")
            async for raw in ws:
                self._handle_frame(raw)
            logger.warning("Market data stream closed by server")
        except ConnectionClosed as e:
            logger.warning("Market data stream connection lost: %s", e)
        except Exception as e:
            # Socket-level error: same path as a close
            logger.error("Market data stream error: %s", e)
        finally:
            if writer is not None:
                writer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await writer
            await self._close_socket(ws)
            self._handle_disconnect()

    async def _write_loop(self, ws: Any, outbox: asyncio.Queue) -> None:
        """Single writer per socket. A failed send closes the socket."""
        while True:
            frame = await outbox.get()
            try:
                await ws.send(encode_frame(frame))
            except Exception as e:
                logger.warning("Failed to send %s frame: %s", frame.get("action"), e)
                await self._close_socket(ws)
                return
            logger.debug("Sent %s frame: %s", frame.get("action"), frame.get("trades"))

    def _handle_frame(self, raw: str | bytes) -> None:
        for message in decode_frame(raw):
            if isinstance(message, MarketEvent):
                self._dispatcher.dispatch(message)
            elif isinstance(message, AuthConfirmed):
                self._handle_authenticated()
            elif isinstance(message, FeedError):
                logger.error("Market data stream error %s: %s", message.code, message.message)
            elif isinstance(message, SubscriptionAck):
                logger.debug(
                    "Upstream subscriptions: trades=%s quotes=%s",
                    list(message.trades),
                    list(message.quotes),
                )

    def _handle_authenticated(self) -> None:
        with self._lock:
            if self._state is not ConnectionState.AWAITING_AUTH:
                logger.debug("Ignoring auth confirmation in state %s", self._state.value)
                return
            self._state = ConnectionState.AUTHENTICATED
            self._attempts = 0

            # Pending covers never-sent interest, the registry covers interest
            # lost with the previous socket
            symbols = sorted(self._pending.union(self._registry.symbols()))
            self._pending.clear()
            if symbols:
                self._registry.mark_confirmed(symbols)
                self._enqueue(subscribe_frame(symbols))

        logger.info("Authenticated; subscribed to %d symbols", len(symbols))

    def _handle_disconnect(self) -> None:
        with self._lock:
            self._ws = None
            self._outbox = None
            if self._closed:
                return
            self._state = ConnectionState.DISCONNECTED
            self._registry.reset_confirmed()
            self._pending = set(self._registry.symbols())

    def _give_up(self) -> None:
        max_attempts = self._settings.max_reconnect_attempts
        error = ReconnectExhaustedError(
            "max reconnect attempts reached",
            {"attempts": max_attempts, "url": self._settings.url},
        )
        with self._lock:
            self._fatal_error = error
            self._state = ConnectionState.DISCONNECTED
        logger.error(
            "Max reconnect attempts reached (%d) for %s; giving up",
            max_attempts,
            self._settings.url,
        )
        if self._on_fatal is not None:
            try:
                self._on_fatal(error)
            except Exception:
                logger.exception("on_fatal callback failed")

    def _enqueue(self, frame: dict[str, Any]) -> None:
        """Queue a frame for the current socket. Caller holds the lock."""
        outbox = self._outbox
        if outbox is None or self._loop is None:
            return
        self._loop.call_soon_threadsafe(outbox.put_nowait, frame)

    @staticmethod
    async def _close_socket(ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug("Error while closing socket: %s", e)
