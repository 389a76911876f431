"""Fixtures for stream client tests.

The upstream socket is replaced by an in-memory FakeWebSocket handed out by a
FakeConnector, injected through the client's `connector` argument. Reconnect
delays go through a recording sleep so backoff tests never actually wait.
"""

import asyncio
import json

import pytest

_CLOSE = object()


class FakeWebSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise OSError("socket is closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSE)

    def push(self, payload) -> None:
        """Deliver an inbound frame. Non-strings are JSON-encoded."""
        self._inbox.put_nowait(payload if isinstance(payload, str) else json.dumps(payload))

    def authenticate(self) -> None:
        self.push([{"T": "success", "msg": "authenticated"}])

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._inbox.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            self.closed = True
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Async callable replacing websockets.connect."""

    def __init__(self, fail_first: int = 0, fail_always: bool = False, drop_on_open: bool = False) -> None:
        self.calls = 0
        self.urls: list[str] = []
        self.kwargs: list[dict] = []
        self.sockets: list[FakeWebSocket] = []
        self._fail_first = fail_first
        self._fail_always = fail_always
        self._drop_on_open = drop_on_open

    async def __call__(self, url: str, **kwargs) -> FakeWebSocket:
        self.calls += 1
        self.urls.append(url)
        self.kwargs.append(kwargs)
        if self._fail_always or self.calls <= self._fail_first:
            raise OSError("connection refused")
        ws = FakeWebSocket()
        if self._drop_on_open:
            ws.drop()
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def make_connector():
    """Factory for connectors with failure modes."""
    return FakeConnector


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def wait_until():
    """Poll a predicate on the event loop until it holds (or fail)."""
    return _wait_until


@pytest.fixture
def trade_frame():
    """Build a single-trade inbound frame."""

    def _build(symbol: str = "AAPL", **fields) -> list[dict]:
        item = {"T": "t", "S": symbol, "t": "2024-01-02T15:30:00.123456789Z"}
        item.update(fields)
        return [item]

    return _build
