"""
Homeboard - Custom Exceptions

SRP: Only error definitions plus the network-error classifier.
Raised by the HTTP transport, propagated through the resilient call
wrapper and mapped to HTTP status codes by the API router.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import httpx


class HomeboardError(Exception):
    """Base error for the dashboard core."""
    pass


class UpstreamError(HomeboardError):
    """A data provider could not deliver a usable response."""
    pass


class UpstreamUnavailable(UpstreamError):
    """Provider is not responding or the connection was refused."""
    pass


class UpstreamTimeout(UpstreamError):
    """Timeout while talking to a provider."""
    pass


class BadUpstreamResponse(UpstreamError):
    """Unexpected response from a provider (HTTP error status, malformed JSON, etc.)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RecoveryError(HomeboardError):
    """A network recovery sequence did not complete."""
    pass


_NETWORK_ERROR_TYPES = (
    UpstreamUnavailable,
    UpstreamTimeout,
    httpx.TransportError,
    asyncio.TimeoutError,
    ConnectionError,
)


def is_network_error(exc: BaseException) -> bool:
    """Return True when ``exc`` looks like a connectivity failure rather than a bad response."""
    if isinstance(exc, BadUpstreamResponse):
        return False
    if isinstance(exc, _NETWORK_ERROR_TYPES):
        return True
    if isinstance(exc, OSError):
        return True
    message = str(exc).lower()
    return any(
        marker in message
        for marker in (
            "network",
            "connection refused",
            "connection reset",
            "name or service not known",
            "temporary failure in name resolution",
        )
    )
