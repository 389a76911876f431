"""SSE streaming endpoint for live market events of one symbol."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .client import MarketStreamClient
from .models import MarketEvent

logger = logging.getLogger(__name__)


def create_stream_router(client: MarketStreamClient) -> APIRouter:
    """Create the SSE streaming router bound to a shared stream client.

    Each viewer gets its own consumer on the shared connection; this factory
    lets us inject the client without globals.
    """
    router = APIRouter(prefix="/api/stream", tags=["streaming"])

    @router.get("/{symbol}")
    async def stream_symbol(symbol: str, request: Request) -> StreamingResponse:
        """SSE endpoint for live events of one symbol.

        The client connects with EventSource and receives events in the format:

            data: {"symbol": "AAPL", "timestamp": "...", "open": 190.5, ...}

        Includes a retry directive so the browser auto-reconnects on
        disconnection (EventSource built-in behavior).
        """
        return StreamingResponse(
            _generate_events(client, symbol, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    return router


async def _generate_events(
    client: MarketStreamClient,
    symbol: str,
    request: Request,
    interval: float = 0.5,
    max_queued: int = 100,
) -> AsyncGenerator[str, None]:
    """Async generator that yields SSE-formatted market events.

    Registers a consumer for `symbol` on entry and removes it on exit, so the
    upstream subscription lives exactly as long as some viewer wants it.
    Checks for client disconnect at least every `interval` seconds.
    """
    queue: asyncio.Queue[MarketEvent] = asyncio.Queue(maxsize=max_queued)

    def on_event(event: MarketEvent) -> None:
        # Slow viewer: drop the oldest event rather than block the feed
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(event)

    client_ip = request.client.host if request.client else "unknown"
    client.subscribe(symbol, on_event)
    logger.info("SSE client connected: %s (%s)", client_ip, symbol)

    try:
        # Tell the client to retry after 1 second if the connection drops
        yield "retry: 1000\n\n"

        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break

            try:
                event = await asyncio.wait_for(queue.get(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            yield f"data: {json.dumps(event.to_dict())}\n\n"
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
        raise
    finally:
        client.unsubscribe(symbol, on_event)
