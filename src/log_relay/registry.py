"""
Destination registry.

Holds configured destinations together with their mutable health and
circuit-breaker state. Each destination has its own lock so deliveries to
independent destinations never contend; the registry-level lock only guards
the name -> state map.

Readers get frozen snapshots, never live references.
"""

from __future__ import annotations

import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from loguru import logger

from .errors import DestinationNotFoundError, DuplicateDestinationError
from .models import Destination

LATENCY_WINDOW = 100
UNHEALTHY_FAILURE_RATE = 0.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CircuitBreakerState:
    """Mutable circuit state; only touched under the destination's lock.

    ``next_retry_at`` is expressed on the breaker's clock (monotonic seconds).
    """

    failure_count: int = 0
    is_open: bool = False
    half_open: bool = False
    last_failure_at: Optional[datetime] = None
    next_retry_at: Optional[float] = None

    def close(self) -> None:
        self.failure_count = 0
        self.is_open = False
        self.half_open = False
        self.next_retry_at = None

    @property
    def state(self) -> str:
        if self.half_open:
            return "half_open"
        return "open" if self.is_open else "closed"


@dataclass(frozen=True)
class CircuitStateSnapshot:
    state: str
    failure_count: int
    is_open: bool
    last_failure_at: Optional[datetime]
    next_retry_at: Optional[float]


@dataclass
class DestinationHealth:
    """Mutable health counters for one destination."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    circuit_skips: int = 0
    records_dropped: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    latency_history: deque = field(default_factory=lambda: deque(maxlen=LATENCY_WINDOW))

    @property
    def average_latency(self) -> float:
        if not self.latency_history:
            return 0.0
        return sum(self.latency_history) / len(self.latency_history)

    @property
    def is_healthy(self) -> bool:
        if self.total_requests == 0:
            return True
        return self.failed_requests / self.total_requests < UNHEALTHY_FAILURE_RATE


@dataclass(frozen=True)
class DestinationHealthSnapshot:
    """Point-in-time copy of a destination's health."""

    name: str
    is_healthy: bool
    total_requests: int
    successful_requests: int
    failed_requests: int
    circuit_skips: int
    records_dropped: int
    average_latency: float
    latency_history: tuple[float, ...]
    last_success_at: Optional[datetime]
    last_failure_at: Optional[datetime]
    circuit: CircuitStateSnapshot

    @property
    def failure_rate(self) -> float:
        return self.failed_requests / self.total_requests if self.total_requests else 0.0


class _DestinationState:
    __slots__ = ("destination", "lock", "health", "circuit")

    def __init__(self, destination: Destination):
        self.destination = destination
        self.lock = threading.Lock()
        self.health = DestinationHealth()
        self.circuit = CircuitBreakerState()

    def snapshot(self) -> DestinationHealthSnapshot:
        h, c = self.health, self.circuit
        return DestinationHealthSnapshot(
            name=self.destination.name,
            is_healthy=h.is_healthy,
            total_requests=h.total_requests,
            successful_requests=h.successful_requests,
            failed_requests=h.failed_requests,
            circuit_skips=h.circuit_skips,
            records_dropped=h.records_dropped,
            average_latency=h.average_latency,
            latency_history=tuple(h.latency_history),
            last_success_at=h.last_success_at,
            last_failure_at=h.last_failure_at,
            circuit=CircuitStateSnapshot(
                state=c.state,
                failure_count=c.failure_count,
                is_open=c.is_open,
                last_failure_at=c.last_failure_at,
                next_retry_at=c.next_retry_at,
            ),
        )


class DestinationRegistry:
    """Source of truth for destinations and their health/circuit state.

    Example:
        registry = DestinationRegistry()
        registry.register(Destination(name="datadog", url="https://..."))
        registry.update("datadog", timeout=5.0)
        registry.snapshot_health()["datadog"].is_healthy
    """

    def __init__(self, destinations: Optional[list[Destination]] = None) -> None:
        self._states: dict[str, _DestinationState] = {}
        self._lock = threading.Lock()
        for dest in destinations or ():
            self.register(dest)

    # --------------- configuration

    def register(self, destination: Destination) -> None:
        with self._lock:
            if destination.name in self._states:
                raise DuplicateDestinationError(destination.name)
            self._states[destination.name] = _DestinationState(destination)
        logger.debug(f"Destination registered: {destination.name} ({destination.url})")

    def deregister(self, name: str) -> None:
        with self._lock:
            if name not in self._states:
                raise DestinationNotFoundError(name)
            del self._states[name]
        logger.debug(f"Destination deregistered: {name}")

    def update(self, name: str, **changes: Any) -> Destination:
        """Merge ``changes`` into a destination's config.

        Health and circuit state are preserved.
        """
        if "name" in changes and changes["name"] != name:
            raise ValueError("Destination name cannot be changed; deregister and register instead")
        state = self._require(name)
        with state.lock:
            state.destination = state.destination.patched(**changes)
            updated = state.destination
        logger.debug(f"Destination updated: {name} fields={sorted(changes)}")
        return updated

    def get(self, name: str) -> Destination:
        return self._require(name).destination

    def list(self) -> list[Destination]:
        with self._lock:
            return [s.destination for s in self._states.values()]

    def names(self) -> list[str]:
        with self._lock:
            return list(self._states)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    # --------------- health

    def snapshot_health(self) -> dict[str, DestinationHealthSnapshot]:
        with self._lock:
            states = list(self._states.values())
        out = {}
        for state in states:
            with state.lock:
                out[state.destination.name] = state.snapshot()
        return out

    def health(self, name: str) -> DestinationHealthSnapshot:
        state = self._require(name)
        with state.lock:
            return state.snapshot()

    def record_success(self, name: str, latency_ms: float) -> None:
        state = self._find(name)
        if state is None:
            return
        with state.lock:
            h = state.health
            h.total_requests += 1
            h.successful_requests += 1
            h.last_success_at = _utcnow()
            h.latency_history.append(latency_ms)

    def record_failure(self, name: str, latency_ms: float) -> None:
        state = self._find(name)
        if state is None:
            return
        with state.lock:
            h = state.health
            h.total_requests += 1
            h.failed_requests += 1
            h.last_failure_at = _utcnow()
            h.latency_history.append(latency_ms)

    def record_skip(self, name: str) -> None:
        state = self._find(name)
        if state is None:
            return
        with state.lock:
            state.health.circuit_skips += 1

    def record_drop(self, name: str, count: int) -> None:
        state = self._find(name)
        if state is None:
            return
        with state.lock:
            state.health.records_dropped += count

    # --------------- circuit access (used by CircuitBreaker)

    @contextmanager
    def circuit(self, name: str) -> Iterator[Optional[CircuitBreakerState]]:
        """Yield the destination's circuit state under its lock.

        Yields None when the destination is no longer registered.
        """
        state = self._find(name)
        if state is None:
            yield None
            return
        with state.lock:
            yield state.circuit

    # --------------- internals

    def _find(self, name: str) -> Optional[_DestinationState]:
        with self._lock:
            state = self._states.get(name)
        if state is None:
            logger.debug(f"Ignoring state update for unknown destination: {name}")
        return state

    def _require(self, name: str) -> _DestinationState:
        with self._lock:
            state = self._states.get(name)
        if state is None:
            raise DestinationNotFoundError(name)
        return state
