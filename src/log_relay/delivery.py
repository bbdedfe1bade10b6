"""
Delivery engine: exactly one HTTP attempt of a batch against one destination.

Retries live in ``log_relay.retry``; this module only builds the request,
sends it under the destination's timeout and records the outcome.
"""

from __future__ import annotations

import asyncio
import gzip
import time
from typing import Callable, Optional

import httpx
from loguru import logger

from .circuit import CircuitBreaker
from .errors import DeliveryError, map_transport_error
from .metrics import (
    COMPRESSION_FAILURES_TOTAL,
    DELIVERY_ATTEMPTS_TOTAL,
    DELIVERY_LATENCY_MS,
)
from .models import Batch, Destination, PayloadTransform
from .payload import default_payload, serialize
from .registry import DestinationRegistry


class DeliveryEngine:
    """Sends batches over a shared ``httpx.AsyncClient``.

    Args:
        registry: Health accounting target
        breaker: Circuit breaker fed with every outcome
        transform: Logger-wide payload transform (a destination's own
            transform wins)
        enable_compression: gzip request bodies
        user_agent: User-Agent header value
        client: Pre-built client (tests, custom transports); not closed by
            ``aclose``
        compressor: Compression function, ``gzip.compress`` by default
    """

    def __init__(
        self,
        registry: DestinationRegistry,
        breaker: CircuitBreaker,
        *,
        transform: Optional[PayloadTransform] = None,
        enable_compression: bool = False,
        user_agent: str = "log-relay/1.0",
        client: Optional[httpx.AsyncClient] = None,
        compressor: Callable[[bytes], bytes] = gzip.compress,
    ) -> None:
        self._registry = registry
        self._breaker = breaker
        self.transform = transform
        self.enable_compression = enable_compression
        self.user_agent = user_agent
        self._client = client
        self._owns_client = client is None
        self._compressor = compressor
        self.compression_failures = 0

    # --------------- lifecycle

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient()
            self._owns_client = True

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # --------------- request building

    def build_request(self, destination: Destination, batch: Batch) -> tuple[bytes, dict[str, str]]:
        """Serialize the batch and assemble headers for ``destination``."""
        transform = destination.transform or self.transform
        payload = transform(batch.records) if transform else default_payload(batch.records)
        body, content_type = serialize(payload)

        headers = {"Content-Type": content_type, "User-Agent": self.user_agent}
        headers.update(destination.headers)
        if destination.api_key:
            headers["Authorization"] = f"Bearer {destination.api_key}"

        if self.enable_compression:
            try:
                body = self._compressor(body)
                headers["Content-Encoding"] = "gzip"
            except Exception as exc:
                self.compression_failures += 1
                COMPRESSION_FAILURES_TOTAL.inc()
                logger.warning(
                    f"Compression failed for {destination.name}, sending uncompressed: "
                    f"{type(exc).__name__}: {exc}"
                )
        return body, headers

    # --------------- send

    async def send(self, destination: Destination, batch: Batch) -> float:
        """Perform one attempt. Returns latency in ms, raises DeliveryError."""
        name = destination.name
        start = time.perf_counter()
        try:
            body, headers = self.build_request(destination, batch)
            client = self._client
            if client is None:
                await self.start()
                client = self._client
            # wait_for cancels the request (and its socket) on deadline
            response = await asyncio.wait_for(
                client.request(
                    destination.method,
                    destination.url,
                    content=body,
                    headers=headers,
                    timeout=destination.timeout,
                ),
                timeout=destination.timeout,
            )
        except Exception as exc:
            latency_ms = (time.perf_counter() - start) * 1000.0
            error = map_transport_error(name, exc)
            self._record_failure(name, latency_ms, error)
            raise error from exc

        latency_ms = (time.perf_counter() - start) * 1000.0
        if not response.is_success:
            error = DeliveryError(
                name,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
            self._record_failure(name, latency_ms, error)
            raise error

        self._registry.record_success(name, latency_ms)
        self._breaker.on_success(name)
        DELIVERY_ATTEMPTS_TOTAL.labels(destination=name, outcome="success").inc()
        DELIVERY_LATENCY_MS.labels(destination=name).observe(latency_ms)
        logger.debug(f"Delivered {len(batch)} records to {name} in {latency_ms:.1f}ms")
        return latency_ms

    def _record_failure(self, name: str, latency_ms: float, error: DeliveryError) -> None:
        self._registry.record_failure(name, latency_ms)
        self._breaker.on_failure(name)
        DELIVERY_ATTEMPTS_TOTAL.labels(destination=name, outcome="failure").inc()
        DELIVERY_LATENCY_MS.labels(destination=name).observe(latency_ms)
        logger.debug(f"Delivery to {name} failed after {latency_ms:.1f}ms: {error}")
