"""
Custom exceptions for the log relay.

Registry mutations raise these to the caller; the delivery path reports
DeliveryError values instead of raising them into the application.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx


class LogRelayError(Exception):
    """Base error for the log relay."""

    pass


class DuplicateDestinationError(LogRelayError):
    """A destination with the same name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"Destination {name!r} already exists")
        self.name = name


class DestinationNotFoundError(LogRelayError):
    """No destination registered under the given name."""

    def __init__(self, name: str):
        super().__init__(f"Destination {name!r} not found")
        self.name = name


NotFoundError = DestinationNotFoundError


class DeliveryError(LogRelayError):
    """One failed delivery of a batch to a destination.

    Attributes:
        destination: Destination name
        cause: Underlying transport exception, if any
        status_code: HTTP status for non-2xx responses
    """

    def __init__(
        self,
        destination: str,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.destination = destination
        self.cause = cause
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Transport errors, timeouts, 408/429 and 5xx are transient."""
        if self.status_code is None:
            return True
        return self.status_code in (408, 429) or self.status_code >= 500

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(destination={self.destination!r}, "
            f"status_code={self.status_code!r}, message={str(self)!r})"
        )


class CircuitOpenError(DeliveryError):
    """Delivery refused because the destination's circuit breaker is open."""

    def __init__(self, destination: str):
        super().__init__(destination, f"Circuit breaker open for {destination!r}")

    @property
    def retryable(self) -> bool:
        return False


def map_transport_error(destination: str, exc: BaseException) -> DeliveryError:
    """Wrap a transport-level exception into a DeliveryError."""
    if isinstance(exc, DeliveryError):
        return exc
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return DeliveryError(destination, f"Timed out: {exc!r}", cause=exc)
    if isinstance(exc, httpx.HTTPError):
        return DeliveryError(destination, f"Transport error: {exc}", cause=exc)
    return DeliveryError(destination, f"{type(exc).__name__}: {exc}", cause=exc)
