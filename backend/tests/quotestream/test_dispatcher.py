"""Tests for Dispatcher."""

import asyncio
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from quotestream.dispatcher import Dispatcher
from quotestream.models import MarketEvent
from quotestream.registry import SubscriptionRegistry


def _event(symbol: str = "AAPL") -> MarketEvent:
    return MarketEvent(symbol=symbol, timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc), close=190.5)


def _dispatcher():
    registry = SubscriptionRegistry()
    return registry, Dispatcher(registry, threading.Lock())


class TestDispatcher:
    """Unit tests for event delivery."""

    def test_delivers_in_registration_order(self):
        """Test every consumer receives the event, in list order."""
        registry, dispatcher = _dispatcher()
        calls = []
        registry.add("AAPL", lambda e: calls.append(("a", e)))
        registry.add("AAPL", lambda e: calls.append(("b", e)))

        event = _event()
        assert dispatcher.dispatch(event) == 2
        assert calls == [("a", event), ("b", event)]

    def test_only_matching_symbol(self):
        """Test consumers of other symbols are not called."""
        registry, dispatcher = _dispatcher()
        other = MagicMock()
        registry.add("MSFT", other)

        assert dispatcher.dispatch(_event("AAPL")) == 0
        other.assert_not_called()

    def test_failing_consumer_is_isolated(self, caplog):
        """Test a raising consumer does not stop delivery to the next one."""
        registry, dispatcher = _dispatcher()
        bad = MagicMock(side_effect=RuntimeError("boom"))
        good = MagicMock()
        registry.add("AAPL", bad)
        registry.add("AAPL", good)

        event = _event()
        assert dispatcher.dispatch(event) == 1
        good.assert_called_once_with(event)
        assert "boom" in caplog.text

    def test_consumer_may_unsubscribe_itself(self):
        """Test a consumer removing itself mid-dispatch does not break delivery."""
        registry, dispatcher = _dispatcher()
        received = []

        def once(event):
            received.append(event)
            registry.remove("AAPL", once)

        registry.add("AAPL", once)
        dispatcher.dispatch(_event())
        dispatcher.dispatch(_event())
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_async_consumer_is_scheduled(self):
        """Test coroutine consumers run as tasks on the loop."""
        registry, dispatcher = _dispatcher()
        received = []

        async def consumer(event):
            received.append(event)

        registry.add("AAPL", consumer)
        event = _event()
        dispatcher.dispatch(event)
        await asyncio.sleep(0)
        assert received == [event]

    @pytest.mark.asyncio
    async def test_async_consumer_failure_is_logged(self, caplog):
        """Test a failing coroutine consumer is logged, not raised."""
        registry, dispatcher = _dispatcher()

        async def consumer(event):
            raise ValueError("async boom")

        registry.add("AAPL", consumer)
        dispatcher.dispatch(_event())
        for _ in range(3):
            await asyncio.sleep(0)
        assert "async boom" in caplog.text

    @pytest.mark.asyncio
    async def test_cancel_pending_stops_async_consumers(self):
        """Test unfinished coroutine consumers are cancelled on request."""
        registry, dispatcher = _dispatcher()
        started = asyncio.Event()

        async def slow(event):
            started.set()
            await asyncio.sleep(10)

        registry.add("AAPL", slow)
        dispatcher.dispatch(_event())
        await started.wait()
        [task] = dispatcher._tasks

        dispatcher.cancel_pending()
        for _ in range(3):
            await asyncio.sleep(0)

        assert task.cancelled()
        assert dispatcher._tasks == set()
