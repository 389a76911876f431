"""Routes decoded market events to registered consumers."""

from __future__ import annotations

import asyncio
import logging
import threading

from .models import MarketEvent
from .registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class Dispatcher:
    """Delivers each event to every consumer of its symbol, in order.

    The consumer list is snapshotted under the shared lock and consumers are
    called outside it, so a consumer may subscribe or unsubscribe from inside
    its own callback. A consumer that raises is logged and skipped.
    """

    def __init__(self, registry: SubscriptionRegistry, lock: threading.Lock) -> None:
        self._registry = registry
        self._lock = lock
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, event: MarketEvent) -> int:
        """Deliver one event. Returns the number of consumers that accepted it."""
        with self._lock:
            consumers = self._registry.consumers(event.symbol)

        delivered = 0
        for consumer in consumers:
            try:
                result = consumer(event)
            except Exception:
                logger.exception("Consumer %r failed on %s event", consumer, event.symbol)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(result, consumer, event.symbol)
            delivered += 1
        return delivered

    def _schedule(self, coro, consumer, symbol: str) -> None:
        """Run an async consumer on the current loop without awaiting it."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    "Async consumer %r failed on %s event",
                    consumer,
                    symbol,
                    exc_info=exc,
                )

        task.add_done_callback(_done)

    def cancel_pending(self) -> None:
        """Cancel async consumer tasks that have not finished yet."""
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
