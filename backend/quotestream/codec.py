"""Wire codec for the market data stream.

Inbound frames are JSON arrays of objects:

    [{"T": "success", "msg": "authenticated"}]
    [{"T": "t", "S": "AAPL", "t": "2024-01-02T15:30:00.123456789Z", "o": 190.1, ...}]
    [{"T": "q", "S": "AAPL", "t": "...", "ap": 190.12, "bp": 190.10}]
    [{"T": "error", "code": 402, "msg": "auth failed"}]

Outbound frames are single JSON objects (auth / subscribe / unsubscribe).
Everything here is pure: no I/O, no state.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from .exceptions import FrameDecodeError
from .models import (
    AUTH_CONFIRMED,
    FeedError,
    FeedMessage,
    MarketEvent,
    SubscriptionAck,
)

logger = logging.getLogger(__name__)

EVENT_KINDS: dict[str, str] = {"t": "trade", "q": "quote"}

# Quote ask price, used when the primary OHLC field is absent
FALLBACK_PRICE_FIELD = "ap"

# RFC 3339 fractions run from 1 to 9 digits; datetime takes exactly 6
_FRACTION_RE = re.compile(r"\.(\d+)")


def decode_frame(raw: str | bytes) -> list[FeedMessage]:
    """Decode one inbound frame into zero or more messages.

    Never raises. Malformed frames are logged and yield an empty list; a bad
    element inside an otherwise valid batch is dropped on its own.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError, RecursionError) as e:
        logger.warning("Dropping malformed frame: %s", e)
        return []

    if not isinstance(payload, list):
        logger.warning("Dropping frame that is not a JSON array: %.200r", raw)
        return []

    messages: list[FeedMessage] = []
    for item in payload:
        try:
            message = decode_message(item)
        except FrameDecodeError as e:
            logger.warning("Dropping frame element: %s", e)
            continue
        if message is not None:
            messages.append(message)
    return messages


def decode_message(item: Any) -> FeedMessage | None:
    """Decode a single array element. Returns None for ignorable messages.

    Raises FrameDecodeError when the element is malformed.
    """
    if not isinstance(item, dict):
        raise FrameDecodeError("element is not an object", {"element": item})

    if item.get("msg") == "authenticated":
        return AUTH_CONFIRMED

    msg_type = item.get("T")
    if msg_type in EVENT_KINDS:
        return _decode_event(item, EVENT_KINDS[msg_type])
    if msg_type == "error":
        return FeedError(code=item.get("code"), message=str(item.get("msg", "")))
    if msg_type == "subscription":
        return SubscriptionAck(
            trades=_symbol_list(item, "trades"),
            quotes=_symbol_list(item, "quotes"),
        )
    # 'success' / 'connected' and channels we never subscribe to
    return None


def _symbol_list(item: dict[str, Any], field: str) -> tuple[str, ...]:
    value = item.get(field)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(s, str) for s in value):
        raise FrameDecodeError(f"{field!r} is not a list of symbols", {field: value})
    return tuple(value)


def _decode_event(item: dict[str, Any], kind: str) -> MarketEvent:
    symbol = item.get("S")
    if not isinstance(symbol, str) or not symbol:
        raise FrameDecodeError("event without symbol", {"T": item.get("T")})

    return MarketEvent(
        symbol=symbol,
        timestamp=_parse_timestamp(item.get("t")),
        open=_price(item, "o"),
        high=_price(item, "h"),
        low=_price(item, "l"),
        close=_price(item, "c"),
        volume=_volume(item),
        kind=kind,
    )


def _is_absent(value: Any) -> bool:
    return value is None or value == ""


def _price(item: dict[str, Any], field: str) -> float:
    """Primary field, else the quote ask price, else 0."""
    value = item.get(field)
    if _is_absent(value):
        value = item.get(FALLBACK_PRICE_FIELD)
    if _is_absent(value):
        return 0.0
    if isinstance(value, bool):
        raise FrameDecodeError(f"non-numeric {field!r}", {"value": value})
    try:
        return float(value)
    except (TypeError, ValueError):
        raise FrameDecodeError(f"non-numeric {field!r}", {"value": value}) from None


def _volume(item: dict[str, Any]) -> int:
    value = item.get("v")
    if _is_absent(value):
        return 0
    if isinstance(value, bool):
        raise FrameDecodeError("non-numeric 'v'", {"value": value})
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        raise FrameDecodeError("non-numeric 'v'", {"value": value}) from None


def _parse_timestamp(value: Any) -> datetime:
    """RFC 3339 string, or epoch milliseconds. Always timezone-aware (UTC)."""
    if isinstance(value, bool) or _is_absent(value):
        raise FrameDecodeError("event without timestamp", {"t": value})

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise FrameDecodeError("timestamp out of range", {"t": value}) from None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise FrameDecodeError("unparseable timestamp", {"t": value}) from None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    raise FrameDecodeError("unsupported timestamp type", {"t": value})


# --- Outbound ---


def auth_frame(key: str, secret: str) -> dict[str, Any]:
    return {"action": "auth", "key": key, "secret": secret}


def subscribe_frame(symbols: Iterable[str]) -> dict[str, Any]:
    """Subscribe to both trades and quotes for every symbol given."""
    symbols = list(symbols)
    return {"action": "subscribe", "trades": symbols, "quotes": list(symbols)}


def unsubscribe_frame(symbols: Iterable[str]) -> dict[str, Any]:
    symbols = list(symbols)
    return {"action": "unsubscribe", "trades": symbols, "quotes": list(symbols)}


def encode_frame(frame: dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"))
