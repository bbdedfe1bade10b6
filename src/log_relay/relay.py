"""
RemoteLogger: buffer, flush scheduling and shutdown drain.

Producer -> log() -> live buffer -> (size threshold | timer | flush()) ->
Batch -> one RetryController pipeline per destination, concurrently.

The live buffer is the only structure shared with producer threads; it is
swapped out under a lock so a record is either pending or in exactly one
in-flight batch.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

import httpx
from loguru import logger

from .circuit import CircuitBreaker
from .delivery import DeliveryEngine
from .errors import DeliveryError, DestinationNotFoundError
from .events import DeliveryEvent, DeliveryEventBus, DeliveryOutcome
from .metrics import BUFFER_SIZE, RECORDS_DROPPED_TOTAL
from .models import Batch, Destination, LogLevel, LogRecord, PayloadTransform
from .registry import DestinationHealthSnapshot, DestinationRegistry
from .retry import RetryController, RetryPolicy
from .settings import RelaySettings


@dataclass(frozen=True)
class LoggerStats:
    """Aggregate view across all destinations."""

    buffer_size: int
    total_destinations: int
    healthy_destinations: int
    unhealthy_destinations: int
    open_circuit_breakers: int
    half_open_circuit_breakers: int
    total_requests: int
    total_successful_requests: int
    total_failed_requests: int
    average_latency: float
    records_dropped: int
    records_requeued: int
    circuit_skips: int
    compression_failures: int
    pending_flushes: int


class _ErrorCallback:
    """Adapts ``on_error(error, destination)`` to the event bus."""

    def __init__(self, fn: Callable[[DeliveryError, Destination], Any]):
        self._fn = fn

    def __call__(self, event: DeliveryEvent) -> Any:
        if event.outcome in (DeliveryOutcome.FAILED, DeliveryOutcome.SKIPPED) and event.error:
            return self._fn(event.error, event.destination)
        return None


class _SuccessCallback:
    """Adapts ``on_success(destination, record_count)`` to the event bus."""

    def __init__(self, fn: Callable[[Destination, int], Any]):
        self._fn = fn

    def __call__(self, event: DeliveryEvent) -> Any:
        if event.outcome == DeliveryOutcome.SUCCEEDED:
            return self._fn(event.destination, event.record_count)
        return None


class RemoteLogger:
    """Buffers log records and ships them to every registered destination.

    Usage:

        relay = RemoteLogger([Destination(name="ingest", url="https://...")])
        async with relay:
            relay.log(LogRecord(level="info", message="hello"))
        # shutdown() on exit drains the buffer

    ``log`` is synchronous, never raises and may be called from any thread.
    Delivery runs on the event loop that called ``start()``.
    """

    def __init__(
        self,
        destinations: Iterable[Destination] = (),
        settings: Optional[RelaySettings] = None,
        *,
        transform: Optional[PayloadTransform] = None,
        on_error: Optional[Callable[[DeliveryError, Destination], Any]] = None,
        on_success: Optional[Callable[[Destination, int], Any]] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or RelaySettings()
        s = self.settings

        self.registry = DestinationRegistry(list(destinations))
        self.breaker = CircuitBreaker(
            self.registry,
            failure_threshold=s.circuit_breaker_threshold,
            reset_timeout=s.circuit_breaker_timeout,
            enabled=s.enable_circuit_breaker,
            clock=clock,
        )
        self.engine = DeliveryEngine(
            self.registry,
            self.breaker,
            transform=transform,
            enable_compression=s.enable_compression,
            user_agent=s.user_agent,
            client=client,
        )
        self.policy = RetryPolicy(
            max_retries=s.max_retries,
            max_backoff_ms=s.max_backoff_ms,
            jitter_ms=s.jitter_ms,
        )
        self.events = DeliveryEventBus()
        self.retry = RetryController(
            self.registry,
            self.breaker,
            self.engine,
            self.policy,
            self.events,
            requeue=self._requeue,
            stale_age=s.stale_age,
        )
        if on_error is not None:
            self.events.subscribe(_ErrorCallback(on_error))
        if on_success is not None:
            self.events.subscribe(_SuccessCallback(on_success))

        self._buffer: list[LogRecord] = []
        self._buffer_lock = threading.Lock()
        # batches cut before a loop is bound; drained by start()/flush()
        self._pending: deque[Batch] = deque()
        # batch_id -> ids of its records merged back into the buffer
        self._requeued_batches: dict[str, set[int]] = {}
        # id(record) -> destinations that already accepted a re-queued record
        self._accepted: dict[int, set[str]] = {}
        self._inflight: set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._started = False
        self._shutting_down = False
        self._records_unrouted = 0
        self._records_overflowed = 0
        self.records_requeued = 0

    # --------------- lifecycle

    async def __aenter__(self) -> "RemoteLogger":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    async def start(self) -> None:
        """Bind to the running loop and start the periodic flush timer."""
        if self._shutting_down:
            raise RuntimeError("RemoteLogger has been shut down")
        if self._started:
            return
        self._loop = asyncio.get_running_loop()
        await self.engine.start()
        self._start_timer()
        self._started = True
        logger.debug(
            f"RemoteLogger started: destinations={len(self.registry)} "
            f"batch_size={self.settings.batch_size} interval={self.settings.flush_interval}s"
        )

        # records logged before start
        with self._buffer_lock:
            batches = self._take_pending_locked()
            if len(self._buffer) >= self.settings.batch_size:
                batches.append(self._take_batch_locked())
        for batch in batches:
            self._spawn(batch)

    async def shutdown(self) -> None:
        """Stop admitting records, flush what remains and wait for in-flight deliveries.

        Idempotent: a second call returns immediately.
        """
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("RemoteLogger initiating shutdown...")
        await self._stop_timer()

        pending = self.buffer_size
        if pending:
            logger.info(f"Flushing {pending} remaining logs...")
            await self.flush()

        while self._inflight:
            logger.info(f"Waiting for {len(self._inflight)} pending flushes...")
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

        await self.engine.aclose()
        logger.info("RemoteLogger shutdown complete")

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    # --------------- producer API

    def log(self, record: LogRecord) -> None:
        """Buffer a record; never blocks on delivery and never raises."""
        if self._shutting_down:
            logger.warning("RemoteLogger shutting down, log record ignored")
            return
        if record.level < self.settings.min_level:
            return

        batch = None
        overflowed = 0
        with self._buffer_lock:
            self._buffer.append(record)
            size = len(self._buffer)
            if size >= self.settings.batch_size:
                batch = self._take_batch_locked()
                if self._loop is None:
                    self._pending.append(batch)
                    batch = None
            if self._loop is None:
                overflowed = self._trim_pending_locked()
            buffered = self._buffered_locked()
        BUFFER_SIZE.set(buffered)

        if overflowed:
            RECORDS_DROPPED_TOTAL.labels(destination="*", reason="buffer_overflow").inc(overflowed)
            logger.warning(
                f"RemoteLogger not started, dropped {overflowed} oldest logs "
                f"(limit {self.settings.max_batch_size})"
            )
        if batch is None:
            return
        if size >= self.settings.max_batch_size:
            logger.warning(f"Buffer reached {size} records, forcing emergency flush")
        self._schedule(batch)

    def log_message(self, level: LogLevel | str, message: str, **fields: Any) -> None:
        """Build a LogRecord from keyword fields and buffer it."""
        try:
            record = LogRecord(level=level, message=message, **fields)
        except ValueError as exc:
            logger.warning(f"Invalid log record ignored: {exc}")
            return
        self.log(record)

    async def flush(self) -> list[DeliveryError]:
        """Send the current buffer to every destination.

        Returns once all per-destination pipelines settled, with the errors of
        those that did not succeed (empty on full success).
        """
        with self._buffer_lock:
            batches = self._take_pending_locked()
            batch = self._take_batch_locked()
            if batch is not None:
                batches.append(batch)
        BUFFER_SIZE.set(self.buffer_size)
        if not batches:
            return []
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        tasks = [self._spawn(b) for b in batches]
        results = await asyncio.shield(asyncio.gather(*tasks))
        return [error for errors in results for error in errors]

    @property
    def buffer_size(self) -> int:
        """Records waiting for delivery, including batches cut before start()."""
        with self._buffer_lock:
            return self._buffered_locked()

    def clear_buffer(self) -> int:
        """Discard all pending records; returns how many were discarded."""
        with self._buffer_lock:
            discarded = self._buffered_locked()
            self._buffer = []
            self._pending.clear()
            self._accepted.clear()
        BUFFER_SIZE.set(0)
        if discarded:
            logger.warning(f"Discarded {discarded} buffered logs")
        return discarded

    # --------------- destinations

    def register_destination(self, destination: Destination) -> None:
        self.registry.register(destination)

    def deregister_destination(self, name: str) -> None:
        self.registry.deregister(name)

    def update_destination(self, name: str, **changes: Any) -> Destination:
        return self.registry.update(name, **changes)

    def health(self) -> dict[str, DestinationHealthSnapshot]:
        return self.registry.snapshot_health()

    def destination_health(self, name: str) -> DestinationHealthSnapshot:
        return self.registry.health(name)

    def reset_circuit_breaker(self, name: str) -> None:
        if name not in self.registry:
            raise DestinationNotFoundError(name)
        self.breaker.reset(name)

    def reset_all_circuit_breakers(self) -> None:
        self.breaker.reset_all()

    async def test_connection(self, name: str) -> bool:
        """Send a single test record to ``name`` (one attempt, no retries)."""
        destination = self.registry.get(name)
        batch = Batch.of(
            [LogRecord(level=LogLevel.INFO, message="Connection test", metadata={"test": True})]
        )
        try:
            await self.engine.send(destination, batch)
        except DeliveryError as exc:
            logger.error(f"Connection test failed for {name}: {exc}")
            return False
        return True

    async def test_all_connections(self) -> dict[str, bool]:
        names = self.registry.names()
        results = await asyncio.gather(
            *(self.test_connection(n) for n in names), return_exceptions=True
        )
        return {n: r is True for n, r in zip(names, results)}

    # --------------- stats & settings

    def stats(self) -> LoggerStats:
        health = self.health()
        snapshots = list(health.values())
        count = len(snapshots)
        healthy = sum(1 for h in snapshots if h.is_healthy)
        return LoggerStats(
            buffer_size=self.buffer_size,
            total_destinations=count,
            healthy_destinations=healthy,
            unhealthy_destinations=count - healthy,
            open_circuit_breakers=sum(1 for n in health if self.breaker.is_open(n)),
            half_open_circuit_breakers=sum(1 for h in snapshots if h.circuit.state == "half_open"),
            total_requests=sum(h.total_requests for h in snapshots),
            total_successful_requests=sum(h.successful_requests for h in snapshots),
            total_failed_requests=sum(h.failed_requests for h in snapshots),
            average_latency=(sum(h.average_latency for h in snapshots) / count) if count else 0.0,
            records_dropped=(
                self.retry.records_dropped + self._records_unrouted + self._records_overflowed
            ),
            records_requeued=self.records_requeued,
            circuit_skips=self.retry.circuit_skips,
            compression_failures=self.engine.compression_failures,
            pending_flushes=len(self._inflight),
        )

    def update_settings(self, **changes: Any) -> RelaySettings:
        """Apply new settings to the running relay.

        Changing ``flush_interval`` restarts the periodic timer.
        """
        data = self.settings.model_dump()
        data.update(changes)
        s = self.settings = RelaySettings.model_validate(data)

        self.breaker.failure_threshold = s.circuit_breaker_threshold
        self.breaker.reset_timeout = s.circuit_breaker_timeout
        self.breaker.enabled = s.enable_circuit_breaker
        self.engine.enable_compression = s.enable_compression
        self.engine.user_agent = s.user_agent
        self.policy.max_retries = s.max_retries
        self.policy.max_backoff_ms = s.max_backoff_ms
        self.policy.jitter_ms = s.jitter_ms
        self.retry.stale_age = s.stale_age

        if "flush_interval" in changes and self._timer_task is not None:
            self._timer_task.cancel()
            self._start_timer()
        logger.debug(f"RemoteLogger settings updated: {sorted(changes)}")
        return s

    # --------------- internals

    def _take_batch_locked(self) -> Optional[Batch]:
        if not self._buffer:
            return None
        batch = Batch.of(self._buffer)
        self._buffer = []
        return batch

    def _take_pending_locked(self) -> list[Batch]:
        batches = list(self._pending)
        self._pending.clear()
        return batches

    def _buffered_locked(self) -> int:
        return len(self._buffer) + sum(len(b) for b in self._pending)

    def _trim_pending_locked(self) -> int:
        """Drop the oldest pre-start batches until within max_batch_size."""
        dropped = 0
        while self._pending and self._buffered_locked() > self.settings.max_batch_size:
            dropped += len(self._pending.popleft())
        self._records_overflowed += dropped
        return dropped

    def _requeue(self, batch: Batch) -> bool:
        if self._shutting_down:
            return False
        with self._buffer_lock:
            merged = self._requeued_batches.get(batch.batch_id, set())
            fresh = [r for r in batch.records if id(r) not in merged]
            if not fresh:
                return True
            if len(self._buffer) + len(fresh) > self.settings.max_batch_size:
                return False
            self._buffer[:0] = fresh
            merged.update(id(r) for r in fresh)
            self._requeued_batches[batch.batch_id] = merged
            self.records_requeued += len(fresh)
            size = len(self._buffer)
        BUFFER_SIZE.set(size)
        return True

    def _schedule(self, batch: Batch) -> None:
        """Hand a batch to the relay's loop from any thread."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._spawn(batch)
            return
        try:
            self._loop.call_soon_threadsafe(self._spawn, batch)
        except RuntimeError as exc:
            # loop closed underneath us: keep the records for a later flush
            logger.error(f"Cannot schedule flush ({exc}), keeping {len(batch)} logs buffered")
            with self._buffer_lock:
                self._buffer[:0] = batch.records

    def _spawn(self, batch: Batch) -> asyncio.Task:
        task = self._loop.create_task(self._dispatch(batch))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def _plan(self, batch: Batch, destinations: list[Destination]) -> list[tuple[Destination, Batch]]:
        """Per-destination views, leaving out re-queued records a destination already accepted."""
        with self._buffer_lock:
            accepted = {id(r): self._accepted.get(id(r), ()) for r in batch.records}
        plans = []
        for dest in destinations:
            records = [r for r in batch.records if dest.name not in accepted[id(r)]]
            if records:
                plans.append((dest, batch.for_destination(records)))
        return plans

    def _settle(self, batch: Batch, plans: list, results: list) -> None:
        """Remember which destinations accepted records that went back to the buffer."""
        with self._buffer_lock:
            merged = self._requeued_batches.pop(batch.batch_id, set())
            buffered = {id(r) for r in self._buffer} if merged else set()
            delivered: dict[int, set[str]] = {}
            for (dest, view), result in zip(plans, results):
                if result is None:
                    for r in view.records:
                        delivered.setdefault(id(r), set()).add(dest.name)
            for r in batch.records:
                key = id(r)
                prior = self._accepted.pop(key, set())
                if key in merged and key in buffered:
                    self._accepted[key] = prior | delivered.get(key, set())

    async def _dispatch(self, batch: Batch) -> list[DeliveryError]:
        destinations = self.registry.list()
        if not destinations:
            self._settle(batch, [], [])
            self._records_unrouted += len(batch)
            logger.warning(f"No destinations registered, dropping {len(batch)} logs")
            return []

        plans = self._plan(batch, destinations)
        results: list = []
        try:
            results = await asyncio.gather(
                *(self.retry.deliver(dest, view) for dest, view in plans),
                return_exceptions=True,
            )
        finally:
            self._settle(batch, plans, results)

        errors: list[DeliveryError] = []
        for (dest, _), result in zip(plans, results):
            if isinstance(result, DeliveryError):
                errors.append(result)
            elif isinstance(result, BaseException):
                logger.opt(exception=result).error(f"Unexpected delivery failure for {dest.name}")
                errors.append(DeliveryError(dest.name, f"Unexpected: {result!r}", cause=result))
        return errors

    def _start_timer(self) -> None:
        self._timer_task = self._loop.create_task(self._flush_loop())

    async def _stop_timer(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.flush_interval)
            try:
                with self._buffer_lock:
                    batch = self._take_batch_locked()
                if batch is not None:
                    BUFFER_SIZE.set(0)
                    logger.debug(f"Periodic flush of {len(batch)} logs")
                    self._spawn(batch)
            except Exception as exc:
                logger.error(f"Periodic flush failed: {type(exc).__name__}: {exc}")
