"""
Pytest configuration and fixtures for log-relay.

Provides cross-platform event loop configuration, scripted HTTP endpoints
(served through httpx.MockTransport) and a controllable clock.
"""

import asyncio
import gzip
import json
import sys
from typing import Callable

import httpx
import pytest

from log_relay import Destination, LogRecord, RelaySettings

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeEndpoint:
    """Scripted ingestion endpoint.

    ``statuses`` are consumed one per request (an Exception instance is
    raised instead of responding); afterwards ``default`` is returned.
    """

    def __init__(self, statuses=None, default: int = 200, delay: float = 0.0):
        self.statuses = list(statuses or [])
        self.default = default
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.statuses.pop(0) if self.statuses else self.default
        if isinstance(status, Exception):
            raise status
        return httpx.Response(status, request=request)

    def bodies(self) -> list[bytes]:
        out = []
        for r in self.requests:
            body = r.content
            if r.headers.get("Content-Encoding") == "gzip":
                body = gzip.decompress(body)
            out.append(body)
        return out

    def payloads(self) -> list[dict]:
        return [json.loads(b) for b in self.bodies()]

    def messages(self) -> list[str]:
        """Messages of every record received, in arrival order."""
        return [log["message"] for p in self.payloads() for log in p["logs"]]


class Router:
    """Routes requests to FakeEndpoints by host."""

    def __init__(self, **endpoints: FakeEndpoint):
        self.endpoints = endpoints

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        return await self.endpoints[request.url.host](request)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_client() -> Callable[..., httpx.AsyncClient]:
    """Build an AsyncClient whose hosts map to FakeEndpoints."""

    def _make(**endpoints: FakeEndpoint) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(Router(**endpoints)))

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_settings() -> RelaySettings:
    """Settings with no jitter and a timer that never fires during a test."""
    return RelaySettings(
        batch_size=10,
        max_batch_size=100,
        flush_interval=60.0,
        max_retries=3,
        jitter_ms=0,
        circuit_breaker_threshold=5,
        circuit_breaker_timeout=60.0,
    )


def dest(name: str, **kwargs) -> Destination:
    """Destination whose host equals its name, with millisecond retry delays."""
    kwargs.setdefault("retry_delay_ms", 1)
    return Destination(name=name, url=f"http://{name}/ingest", **kwargs)


def records(n: int, prefix: str = "msg") -> list[LogRecord]:
    return [LogRecord(level="info", message=f"{prefix}-{i}") for i in range(n)]


async def settle(relay, timeout: float = 2.0) -> None:
    """Wait until the relay has no in-flight deliveries."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    await asyncio.sleep(0)
    while relay.stats().pending_flushes:
        if loop.time() > deadline:
            raise AssertionError("deliveries did not settle")
        await asyncio.sleep(0.01)
