"""
Retry policy and retry controller.

The controller wraps the delivery engine for one (batch, destination) pair:
an explicit loop bounded by the destination's retry ceiling, with
exponential backoff plus jitter between attempts. Exhausted batches are
re-queued while still fresh, otherwise dropped and counted.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from .circuit import CircuitBreaker
from .delivery import DeliveryEngine
from .errors import CircuitOpenError, DeliveryError
from .events import DeliveryEvent, DeliveryEventBus, DeliveryOutcome
from .metrics import CIRCUIT_SKIPS_TOTAL, RECORDS_DROPPED_TOTAL, RECORDS_REQUEUED_TOTAL
from .models import Batch, Destination
from .registry import DestinationRegistry


@dataclass
class RetryPolicy:
    """Exponential backoff with additive jitter and a hard cap.

    delay(attempt) = min(base * 2**(attempt - 1) + uniform(0, jitter_ms), max_backoff_ms)
    """

    max_retries: int = 3
    max_backoff_ms: int = 30_000
    jitter_ms: int = 1_000
    jitter: bool = True

    def next_backoff_ms(self, attempt: int, base_delay_ms: int = 1000) -> float:
        """Delay before the retry following failed attempt ``attempt`` (1-based)."""
        exp = base_delay_ms * (2 ** max(0, attempt - 1))
        if self.jitter and self.jitter_ms > 0:
            exp += random.uniform(0, self.jitter_ms)
        return float(min(exp, self.max_backoff_ms))

    def ceiling(self, destination: Destination) -> int:
        """Total attempts allowed for ``destination``."""
        attempts = destination.retry_attempts or self.max_retries
        return max(1, min(attempts, self.max_retries))


# Returns True when the batch's records are back in the live buffer (by this
# call or an earlier one for another destination).
Requeue = Callable[[Batch], bool]


class RetryController:
    """Apply the retry policy around the delivery engine.

    Args:
        registry: Destination health target for skips and drops
        breaker: Consulted before every attempt
        engine: Performs single attempts
        policy: Backoff and ceiling
        bus: Receives one terminal event per batch/destination (plus
            requeue/drop follow-ups)
        requeue: Merges a failed batch back into the live buffer
        stale_age: Batches older than this (seconds) are never re-queued
    """

    def __init__(
        self,
        registry: DestinationRegistry,
        breaker: CircuitBreaker,
        engine: DeliveryEngine,
        policy: RetryPolicy,
        bus: DeliveryEventBus,
        *,
        requeue: Optional[Requeue] = None,
        stale_age: float = 60.0,
    ) -> None:
        self._registry = registry
        self._breaker = breaker
        self._engine = engine
        self.policy = policy
        self._bus = bus
        self._requeue = requeue
        self.stale_age = stale_age

        self.records_dropped = 0
        self.circuit_skips = 0

    async def deliver(self, destination: Destination, batch: Batch) -> Optional[DeliveryError]:
        """Deliver ``batch`` to ``destination``; returns the final error or None."""
        name = destination.name
        ceiling = self.policy.ceiling(destination)
        last_error: Optional[DeliveryError] = None

        while True:
            if not self._breaker.acquire(name):
                if batch.attempt_count == 0:
                    return await self._skip(destination, batch)
                logger.warning(f"Circuit breaker opened for {name} mid-retry, giving up")
                break

            batch.attempt_count += 1
            try:
                await self._engine.send(destination, batch)
            except DeliveryError as exc:
                last_error = exc
            else:
                await self._bus.publish(
                    DeliveryEvent(
                        destination, DeliveryOutcome.SUCCEEDED, len(batch), batch.attempt_count
                    )
                )
                return None
            finally:
                # a cancelled probe must not hold the half-open slot
                self._breaker.release_probe(name)

            if batch.attempt_count >= ceiling:
                break
            delay_ms = self.policy.next_backoff_ms(batch.attempt_count, destination.retry_delay_ms)
            logger.warning(
                f"Failed to send logs to {name}, retrying in {delay_ms:.0f}ms "
                f"(attempt {batch.attempt_count}/{ceiling}): {last_error}"
            )
            await asyncio.sleep(delay_ms / 1000.0)

        return await self._give_up(destination, batch, last_error)

    # --------------- terminal paths

    async def _give_up(
        self, destination: Destination, batch: Batch, error: DeliveryError
    ) -> DeliveryError:
        name = destination.name
        logger.error(
            f"Failed to send {len(batch)} logs to {name} after "
            f"{batch.attempt_count} attempts: {error}"
        )
        await self._bus.publish(
            DeliveryEvent(destination, DeliveryOutcome.FAILED, len(batch), batch.attempt_count, error)
        )

        if batch.age < self.stale_age and self._requeue is not None and self._requeue(batch):
            RECORDS_REQUEUED_TOTAL.labels(destination=name).inc(len(batch))
            logger.info(f"Re-queued {len(batch)} logs after failed delivery to {name}")
            await self._bus.publish(
                DeliveryEvent(
                    destination, DeliveryOutcome.REQUEUED, len(batch), batch.attempt_count, error
                )
            )
        else:
            await self._drop(destination, batch, error, reason="retries_exhausted")
        return error

    async def _skip(self, destination: Destination, batch: Batch) -> CircuitOpenError:
        name = destination.name
        logger.warning(f"Circuit breaker open for {name}, skipping {len(batch)} logs")
        self.circuit_skips += 1
        self._registry.record_skip(name)
        CIRCUIT_SKIPS_TOTAL.labels(destination=name).inc()

        error = CircuitOpenError(name)
        await self._bus.publish(DeliveryEvent(destination, DeliveryOutcome.SKIPPED, len(batch), 0, error))
        await self._drop(destination, batch, error, reason="circuit_open")
        return error

    async def _drop(
        self, destination: Destination, batch: Batch, error: DeliveryError, *, reason: str
    ) -> None:
        name = destination.name
        self.records_dropped += len(batch)
        self._registry.record_drop(name, len(batch))
        RECORDS_DROPPED_TOTAL.labels(destination=name, reason=reason).inc(len(batch))
        logger.warning(f"Dropped {len(batch)} logs for {name} ({reason})")
        await self._bus.publish(
            DeliveryEvent(destination, DeliveryOutcome.DROPPED, len(batch), batch.attempt_count, error)
        )
