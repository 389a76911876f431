"""Data models for the market data stream."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle state of the upstream WebSocket connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_AUTH = "awaiting_auth"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True, slots=True)
class MarketEvent:
    """Immutable trade or quote event for a single symbol."""

    symbol: str
    timestamp: datetime
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: int = 0
    kind: str = "trade"  # 'trade' or 'quote'

    @property
    def is_quote(self) -> bool:
        return self.kind == "quote"

    def to_dict(self) -> dict:
        """Serialize for JSON / SSE transmission."""
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "kind": self.kind,
        }


@dataclass(frozen=True, slots=True)
class AuthConfirmed:
    """Server accepted the credentials sent in the auth frame."""


@dataclass(frozen=True, slots=True)
class FeedError:
    """Error message pushed by the server, e.g. bad credentials or limits."""

    code: int | None
    message: str


@dataclass(frozen=True, slots=True)
class SubscriptionAck:
    """Server echo of the channels currently subscribed on this socket."""

    trades: tuple[str, ...] = ()
    quotes: tuple[str, ...] = ()


AUTH_CONFIRMED = AuthConfirmed()

# Anything decode_frame() can yield
FeedMessage = MarketEvent | AuthConfirmed | FeedError | SubscriptionAck
