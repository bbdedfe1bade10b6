"""
Delivery observer bus.

Each RemoteLogger owns one bus and publishes a DeliveryEvent whenever a
batch settles against a destination. Subscribers register once; one
subscriber's failure never affects the others or the delivery path.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from loguru import logger

from .errors import DeliveryError
from .models import Destination


class DeliveryOutcome(str, Enum):
    """How a batch settled for one destination."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"  # retries exhausted
    SKIPPED = "skipped"  # circuit open, no attempt made
    REQUEUED = "requeued"  # records merged back into the buffer
    DROPPED = "dropped"  # records discarded and counted as lost


@dataclass(frozen=True)
class DeliveryEvent:
    """Immutable delivery outcome.

    Attributes:
        destination: Destination the batch was sent to
        outcome: How the batch settled
        record_count: Records in the batch
        attempts: HTTP attempts made for this destination
        error: Last DeliveryError, if any
    """

    destination: Destination
    outcome: DeliveryOutcome
    record_count: int
    attempts: int = 0
    error: Optional[DeliveryError] = None

    @property
    def name(self) -> str:
        return self.destination.name

    @property
    def ok(self) -> bool:
        return self.outcome == DeliveryOutcome.SUCCEEDED


DeliverySubscriber = Callable[[DeliveryEvent], Union[None, Awaitable[None]]]


class DeliveryEventBus:
    """In-process pub/sub for delivery events.

    Subscribers may be plain or async callables.

    Example:
        bus = DeliveryEventBus()

        async def on_event(event: DeliveryEvent):
            if event.outcome == DeliveryOutcome.DROPPED:
                alert(event.destination)

        bus.subscribe(on_event)
    """

    def __init__(self) -> None:
        self._subs: list[DeliverySubscriber] = []

    def subscribe(self, callback: DeliverySubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Delivery subscriber added (total: {len(self._subs)})")

    def unsubscribe(self, callback: DeliverySubscriber) -> None:
        """Remove a subscriber; no-op if it was never added."""
        try:
            self._subs.remove(callback)
            logger.debug(f"Delivery subscriber removed (total: {len(self._subs)})")
        except ValueError:
            pass

    async def publish(self, event: DeliveryEvent) -> None:
        if not self._subs:
            return

        for callback in list(self._subs):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning(
                    f"Delivery subscriber error (ignored): {type(exc).__name__}: {exc}"
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)
