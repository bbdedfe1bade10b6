"""
Unit tests for the single-attempt DeliveryEngine.
"""

import gzip
import json

import httpx
import pytest

from conftest import FakeEndpoint, dest, records
from log_relay import (
    Batch,
    CircuitBreaker,
    DeliveryEngine,
    DeliveryError,
    DestinationRegistry,
    LogRecord,
)
from log_relay.payload import NDJSON_CONTENT_TYPE, ndjson_payload


@pytest.fixture
def registry():
    return DestinationRegistry()


@pytest.fixture
def breaker(registry):
    return CircuitBreaker(registry, failure_threshold=2, reset_timeout=60.0)


def _engine(registry, breaker, client, **kwargs):
    return DeliveryEngine(registry, breaker, client=client, **kwargs)


@pytest.mark.asyncio
async def test_default_envelope_and_headers(registry, breaker, make_client):
    ep = FakeEndpoint()
    d = dest("ingest", api_key="secret", headers={"X-Source": "billing"})
    registry.register(d)
    engine = _engine(registry, breaker, make_client(ingest=ep))

    latency = await engine.send(d, Batch.of(records(3)))

    assert latency >= 0
    req = ep.requests[0]
    assert req.method == "POST"
    assert req.headers["Content-Type"] == "application/json"
    assert req.headers["Authorization"] == "Bearer secret"
    assert req.headers["X-Source"] == "billing"
    assert "Content-Encoding" not in req.headers

    body = json.loads(req.content)
    assert body["version"] == "1.0"
    assert body["count"] == 3
    assert [log["message"] for log in body["logs"]] == ["msg-0", "msg-1", "msg-2"]
    assert set(body["logs"][0]) == {
        "timestamp",
        "level",
        "message",
        "metadata",
        "category",
        "requestId",
        "namespace",
    }

    h = registry.health("ingest")
    assert h.successful_requests == 1
    assert len(h.latency_history) == 1


@pytest.mark.asyncio
async def test_put_method(registry, breaker, make_client):
    ep = FakeEndpoint()
    d = dest("ingest", method="PUT")
    registry.register(d)
    await _engine(registry, breaker, make_client(ingest=ep)).send(d, Batch.of(records(1)))
    assert ep.requests[0].method == "PUT"


@pytest.mark.asyncio
async def test_gzip_compression(registry, breaker, make_client):
    ep = FakeEndpoint()
    d = dest("ingest")
    registry.register(d)
    engine = _engine(registry, breaker, make_client(ingest=ep), enable_compression=True)

    await engine.send(d, Batch.of(records(2)))

    req = ep.requests[0]
    assert req.headers["Content-Encoding"] == "gzip"
    assert json.loads(gzip.decompress(req.content))["count"] == 2


@pytest.mark.asyncio
async def test_compression_failure_falls_back_to_plain(registry, breaker, make_client):
    def broken(_: bytes) -> bytes:
        raise OSError("zlib unavailable")

    ep = FakeEndpoint()
    d = dest("ingest")
    registry.register(d)
    engine = _engine(
        registry, breaker, make_client(ingest=ep), enable_compression=True, compressor=broken
    )

    await engine.send(d, Batch.of(records(1)))

    req = ep.requests[0]
    assert "Content-Encoding" not in req.headers
    assert json.loads(req.content)["count"] == 1
    assert engine.compression_failures == 1


@pytest.mark.asyncio
async def test_non_2xx_is_failure(registry, breaker, make_client):
    ep = FakeEndpoint(default=503)
    d = dest("ingest")
    registry.register(d)
    engine = _engine(registry, breaker, make_client(ingest=ep))

    with pytest.raises(DeliveryError) as ei:
        await engine.send(d, Batch.of(records(1)))

    assert ei.value.status_code == 503
    assert ei.value.destination == "ingest"
    assert ei.value.retryable
    h = registry.health("ingest")
    assert h.failed_requests == 1
    assert len(h.latency_history) == 1  # latency recorded on failure too
    assert h.circuit.failure_count == 1


@pytest.mark.asyncio
async def test_client_error_is_not_retryable(registry, breaker, make_client):
    d = dest("ingest")
    registry.register(d)
    engine = _engine(registry, breaker, make_client(ingest=FakeEndpoint(default=400)))
    with pytest.raises(DeliveryError) as ei:
        await engine.send(d, Batch.of(records(1)))
    assert not ei.value.retryable


@pytest.mark.asyncio
async def test_transport_error_is_failure(registry, breaker, make_client):
    ep = FakeEndpoint(statuses=[httpx.ConnectError("connection refused")])
    d = dest("ingest")
    registry.register(d)
    engine = _engine(registry, breaker, make_client(ingest=ep))

    with pytest.raises(DeliveryError) as ei:
        await engine.send(d, Batch.of(records(1)))

    assert ei.value.status_code is None
    assert isinstance(ei.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_timeout_aborts_attempt(registry, breaker, make_client):
    ep = FakeEndpoint(delay=1.0)
    d = dest("ingest", timeout=0.05)
    registry.register(d)
    engine = _engine(registry, breaker, make_client(ingest=ep))

    with pytest.raises(DeliveryError) as ei:
        await engine.send(d, Batch.of(records(1)))

    assert "Timed out" in str(ei.value)
    assert registry.health("ingest").failed_requests == 1


@pytest.mark.asyncio
async def test_failures_feed_circuit_breaker(registry, breaker, make_client):
    d = dest("ingest")
    registry.register(d)
    engine = _engine(registry, breaker, make_client(ingest=FakeEndpoint(default=500)))

    for _ in range(2):
        with pytest.raises(DeliveryError):
            await engine.send(d, Batch.of(records(1)))
    assert breaker.state("ingest") == "open"


@pytest.mark.asyncio
async def test_destination_transform_wins(registry, breaker, make_client):
    ep = FakeEndpoint()
    d = dest("ingest", transform=ndjson_payload)
    registry.register(d)

    def logger_wide(recs):
        return {"never": "used"}

    engine = _engine(registry, breaker, make_client(ingest=ep), transform=logger_wide)
    await engine.send(d, Batch.of(records(2)))

    req = ep.requests[0]
    assert req.headers["Content-Type"] == NDJSON_CONTENT_TYPE
    lines = req.content.decode().splitlines()
    assert [json.loads(line)["message"] for line in lines] == ["msg-0", "msg-1"]


@pytest.mark.asyncio
async def test_logger_wide_transform(registry, breaker, make_client):
    ep = FakeEndpoint()
    d = dest("ingest")
    registry.register(d)

    def shaped(recs):
        return {"events": [{"msg": r.message, "sev": r.level.value} for r in recs]}

    engine = _engine(registry, breaker, make_client(ingest=ep), transform=shaped)
    await engine.send(d, Batch.of([LogRecord(level="error", message="x")]))

    assert json.loads(ep.requests[0].content) == {"events": [{"msg": "x", "sev": "error"}]}


@pytest.mark.asyncio
async def test_owned_client_lifecycle(registry, breaker):
    engine = DeliveryEngine(registry, breaker)
    await engine.start()
    assert engine._client is not None
    await engine.aclose()
    assert engine._client is None


@pytest.mark.asyncio
async def test_injected_client_not_closed(registry, breaker, make_client):
    client = make_client(ingest=FakeEndpoint())
    engine = DeliveryEngine(registry, breaker, client=client)
    await engine.aclose()
    assert not client.is_closed
    await client.aclose()
