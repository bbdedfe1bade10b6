"""
Demo script for RemoteLogger.

Ships logs to two in-process endpoints: one healthy, one that fails often
enough to trip its circuit breaker. Shows retries, re-queue, skips and the
shutdown drain without any network access.
"""

import asyncio
import random

import httpx
from loguru import logger

from log_relay import Destination, LogRecord, RelaySettings, RemoteLogger


async def healthy(request: httpx.Request) -> httpx.Response:
    await asyncio.sleep(0.005)
    return httpx.Response(202)


async def flaky(request: httpx.Request) -> httpx.Response:
    await asyncio.sleep(0.02)
    return httpx.Response(503 if random.random() < 0.7 else 200)


async def route(request: httpx.Request) -> httpx.Response:
    handler = healthy if request.url.host == "primary" else flaky
    return await handler(request)


def on_error(error, destination):
    logger.warning(f"⚠️  {destination.name}: {error}")


async def main():
    settings = RelaySettings(
        batch_size=25,
        max_batch_size=200,
        flush_interval=0.2,
        jitter_ms=50,
        circuit_breaker_threshold=4,
        circuit_breaker_timeout=1.0,
    )
    destinations = [
        Destination(name="primary", url="http://primary/ingest"),
        Destination(name="secondary", url="http://secondary/ingest", retry_delay_ms=20),
    ]
    client = httpx.AsyncClient(transport=httpx.MockTransport(route))

    async with RemoteLogger(destinations, settings, client=client, on_error=on_error) as relay:
        logger.info("🚀 Starting relay demo - producing 500 records")

        for i in range(500):
            relay.log(LogRecord(level="info", message=f"event {i}", metadata={"seq": i}))
            if i % 100 == 0:
                stats = relay.stats()
                logger.info(
                    f"Progress: {i}/500 | buffer={stats.buffer_size} "
                    f"| in-flight={stats.pending_flushes} | open={stats.open_circuit_breakers}"
                )
            await asyncio.sleep(0.002)

        logger.info("⏳ Draining...")

    stats = relay.stats()
    for name, health in relay.health().items():
        logger.info(
            f"{name}: ok={health.successful_requests} failed={health.failed_requests} "
            f"skips={health.circuit_skips} dropped={health.records_dropped} "
            f"avg={health.average_latency:.1f}ms circuit={health.circuit.state}"
        )
    logger.info(
        f"✅ Relay demo complete: requeued={stats.records_requeued} dropped={stats.records_dropped}"
    )
    await client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
