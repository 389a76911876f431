"""Per-symbol consumer registry."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

# A consumer receives one MarketEvent. It may return an awaitable.
Consumer = Callable[[Any], Any]


@dataclass(slots=True)
class SubscriptionState:
    """Consumers interested in one symbol, and whether upstream knows about it."""

    consumers: list[Consumer] = field(default_factory=list)
    confirmed: bool = False


class SubscriptionRegistry:
    """Tracks which consumers want which symbols.

    A symbol is present iff it has at least one consumer. Consumers are matched
    by equality of the callable itself, so a plain function or a bound method
    of the same object can be removed again, while two distinct closures never
    match each other.

    Not locked on its own: the ConnectionManager serializes every call.
    """

    def __init__(self) -> None:
        self._entries: dict[str, SubscriptionState] = {}

    def add(self, symbol: str, consumer: Consumer) -> bool:
        """Register a consumer. Returns True if the symbol entry was created."""
        entry = self._entries.get(symbol)
        created = entry is None
        if entry is None:
            entry = self._entries[symbol] = SubscriptionState()
        entry.consumers.append(consumer)
        return created

    def remove(self, symbol: str, consumer: Consumer) -> SubscriptionState | None:
        """Remove a consumer from a symbol.

        Returns the deleted entry when its last consumer went away, None
        otherwise (including unknown symbol or consumer).
        """
        entry = self._entries.get(symbol)
        if entry is None:
            return None
        entry.consumers[:] = [c for c in entry.consumers if c != consumer]
        if entry.consumers:
            return None
        del self._entries[symbol]
        return entry

    def consumers(self, symbol: str) -> list[Consumer]:
        """Snapshot of the consumers for a symbol, in registration order."""
        entry = self._entries.get(symbol)
        return list(entry.consumers) if entry else []

    def symbols(self) -> list[str]:
        return list(self._entries)

    def is_confirmed(self, symbol: str) -> bool:
        entry = self._entries.get(symbol)
        return entry.confirmed if entry else False

    def confirmed_symbols(self) -> list[str]:
        return [s for s, entry in self._entries.items() if entry.confirmed]

    def mark_confirmed(self, symbols: Iterable[str]) -> None:
        for symbol in symbols:
            entry = self._entries.get(symbol)
            if entry is not None:
                entry.confirmed = True

    def reset_confirmed(self) -> None:
        """Forget upstream state, e.g. after the socket went away."""
        for entry in self._entries.values():
            entry.confirmed = False

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._entries
