"""Exception hierarchy for the quotestream client.

QuoteStreamError (base)
├── ConfigurationError       - missing or invalid settings
├── FrameDecodeError         - one inbound frame could not be decoded
├── ClientClosedError        - the client was used after close()
└── ReconnectExhaustedError  - reconnect budget used up, client gave up
"""

from __future__ import annotations

from typing import Any


class QuoteStreamError(Exception):
    """Base exception for all quotestream errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(QuoteStreamError):
    """Raised when stream settings are missing or invalid.

    Action: fix the environment and construct the client again.
    """


class FrameDecodeError(QuoteStreamError):
    """Raised by the codec for a malformed frame element.

    Never escapes the codec: decode_frame() logs it and drops the element.
    """


class ClientClosedError(QuoteStreamError):
    """Raised when subscribing on a client that has been closed."""


class ReconnectExhaustedError(QuoteStreamError):
    """Terminal condition: consecutive reconnect attempts all failed.

    Reported to the on_fatal callback and logged; the connection stays
    disconnected until reconnect() is called or a new client is built.
    """
