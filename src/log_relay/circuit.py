"""
Per-destination circuit breaker.

closed --(threshold failures)--> open --(timeout elapsed, next attempt)-->
half_open --(probe succeeds)--> closed
half_open --(probe fails)--> open

State lives in the DestinationRegistry and is only mutated under the
destination's lock. Only ``acquire`` (called by the delivery path) performs
the open -> half_open transition; ``is_open`` is a pure query.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from .registry import DestinationRegistry


class CircuitBreaker:
    """Circuit breaker operating on registry-owned state.

    Failures are counted per delivery attempt, not per batch.
    """

    def __init__(
        self,
        registry: DestinationRegistry,
        *,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        self._registry = registry
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.enabled = enabled
        self._clock = clock

    def acquire(self, name: str) -> bool:
        """Ask permission for one delivery attempt.

        Returns True when closed, or when open but the timeout elapsed and no
        probe is in flight (the caller becomes the half-open probe).
        """
        if not self.enabled:
            return True
        with self._registry.circuit(name) as c:
            if c is None:
                return False
            if not c.is_open:
                return True
            if c.half_open:
                return False  # a probe is already in flight
            if c.next_retry_at is not None and self._clock() >= c.next_retry_at:
                c.half_open = True
                c.failure_count = 0
                logger.info(f"Circuit breaker half-open for {name}, allowing probe")
                return True
            return False

    def is_open(self, name: str) -> bool:
        """True while open and before ``next_retry_at``; no side effects."""
        with self._registry.circuit(name) as c:
            if c is None or not c.is_open or c.half_open:
                return False
            return c.next_retry_at is None or self._clock() < c.next_retry_at

    def state(self, name: str) -> str:
        with self._registry.circuit(name) as c:
            return c.state if c is not None else "closed"

    def on_success(self, name: str) -> None:
        with self._registry.circuit(name) as c:
            if c is None:
                return
            if not self.enabled and not c.half_open:
                return
            was_open = c.is_open
            c.close()
        if was_open:
            logger.info(f"Circuit breaker closed for {name}")

    def on_failure(self, name: str) -> None:
        with self._registry.circuit(name) as c:
            if c is None:
                return
            if not self.enabled:
                # disabled mid-probe: free the probe slot, keep the old deadline
                c.half_open = False
                return
            c.failure_count += 1
            c.last_failure_at = datetime.now(timezone.utc)
            if c.half_open:
                reason = "probe failed"
            elif not c.is_open and c.failure_count >= self.failure_threshold:
                reason = f"{c.failure_count} consecutive failures"
            else:
                return
            c.is_open = True
            c.half_open = False
            c.next_retry_at = self._clock() + self.reset_timeout
        logger.warning(
            f"Circuit breaker opened for {name} ({reason}), "
            f"retrying in {self.reset_timeout:.1f}s"
        )

    def release_probe(self, name: str) -> None:
        """Reopen a half-open breaker whose probe ended without an outcome.

        Called after every attempt; a no-op unless the attempt was a probe
        that was cancelled before ``on_success``/``on_failure`` ran.
        """
        with self._registry.circuit(name) as c:
            if c is None or not c.half_open:
                return
            c.half_open = False
            c.is_open = True
            c.next_retry_at = self._clock() + self.reset_timeout
        logger.warning(
            f"Circuit breaker probe for {name} abandoned, "
            f"retrying in {self.reset_timeout:.1f}s"
        )

    def reset(self, name: str) -> None:
        """Force closed with zero failures."""
        with self._registry.circuit(name) as c:
            if c is None:
                return
            c.close()
            c.last_failure_at = None
        logger.info(f"Circuit breaker reset for {name}")

    def reset_all(self) -> None:
        for name in self._registry.names():
            self.reset(name)
