"""Stream settings loaded from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .exceptions import ConfigurationError

DEFAULT_STREAM_URL = "wss://stream.data.alpaca.markets/v2/iex"


@dataclass(frozen=True, slots=True)
class StreamSettings:
    """Connection settings for the market data stream.

    reconnect_base_delay is in seconds; attempt N waits
    reconnect_base_delay * 2 ** (N - 1).
    """

    api_key_id: str
    api_secret_key: str = field(repr=False)
    url: str = DEFAULT_STREAM_URL
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 1.0
    ping_interval: float | None = 20.0
    ping_timeout: float | None = 20.0
    open_timeout: float | None = 10.0

    def __post_init__(self) -> None:
        if not self.api_key_id or not self.api_secret_key:
            raise ConfigurationError("API key id and secret key are both required")
        if self.max_reconnect_attempts < 0:
            raise ConfigurationError(
                "max_reconnect_attempts must be >= 0",
                {"max_reconnect_attempts": self.max_reconnect_attempts},
            )
        if self.reconnect_base_delay < 0:
            raise ConfigurationError(
                "reconnect_base_delay must be >= 0",
                {"reconnect_base_delay": self.reconnect_base_delay},
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StreamSettings:
        """Build settings from environment variables.

        - ALPACA_API_KEY_ID / ALPACA_API_SECRET_KEY: required
        - ALPACA_STREAM_URL: optional, defaults to the IEX feed
        - ALPACA_MAX_RECONNECT_ATTEMPTS, ALPACA_RECONNECT_BASE_DELAY: optional
        """
        env = os.environ if environ is None else environ

        key_id = env.get("ALPACA_API_KEY_ID", "").strip()
        secret = env.get("ALPACA_API_SECRET_KEY", "").strip()
        if not key_id or not secret:
            raise ConfigurationError(
                "ALPACA_API_KEY_ID and ALPACA_API_SECRET_KEY must be set"
            )

        url = env.get("ALPACA_STREAM_URL", "").strip() or DEFAULT_STREAM_URL
        return cls(
            api_key_id=key_id,
            api_secret_key=secret,
            url=url,
            max_reconnect_attempts=_read_number(env, "ALPACA_MAX_RECONNECT_ATTEMPTS", int, 5),
            reconnect_base_delay=_read_number(env, "ALPACA_RECONNECT_BASE_DELAY", float, 1.0),
        )


def _read_number(env: Mapping[str, str], name: str, cast, default):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number", {name: raw}) from None
