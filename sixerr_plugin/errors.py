"""
Sixerr plugin exceptions.
"""

from __future__ import annotations


class SixerrError(Exception):
    """Base exception for sixerr plugin errors."""

    pass


class ProtocolError(SixerrError):
    """Raised when a WebSocket frame fails to parse or validate."""

    pass


class BackendError(SixerrError):
    """Raised when the local inference backend fails or returns garbage."""

    pass


class PaymentError(SixerrError):
    """Raised when a Permit2 payment cannot be authorized or is rejected.

    Never retried: a second 402 after signing is reported, not re-signed.
    """

    pass


class MarketplaceError(SixerrError):
    """Raised when the marketplace answers with an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
