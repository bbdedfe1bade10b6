"""
Unit tests for the loguru and stdlib logging adapters.
"""

import logging

import pytest
from loguru import logger

from conftest import FakeEndpoint, dest
from log_relay import LoguruSink, RelayHandler, RemoteLogger
from log_relay.sinks import _is_internal


@pytest.fixture
def shipped(fast_settings, make_client):
    ep = FakeEndpoint()
    relay = RemoteLogger([dest("ingest")], fast_settings, client=make_client(ingest=ep))
    return relay, ep


@pytest.mark.asyncio
async def test_loguru_sink_maps_extra(shipped):
    relay, ep = shipped
    handler_id = logger.add(LoguruSink(relay), level="DEBUG")
    try:
        logger.bind(request_id="req-9", user="u1", category="billing").warning("card declined")
    finally:
        logger.remove(handler_id)

    assert relay.buffer_size == 1
    await relay.flush()
    await relay.shutdown()

    log = ep.payloads()[0]["logs"][0]
    assert log["message"] == "card declined"
    assert log["level"] == "warning"
    assert log["requestId"] == "req-9"
    assert log["category"] == "billing"
    assert log["metadata"] == {"user": "u1"}


@pytest.mark.asyncio
async def test_loguru_sink_includes_exception(shipped):
    relay, ep = shipped
    handler_id = logger.add(LoguruSink(relay), level="DEBUG")
    try:
        try:
            raise KeyError("missing")
        except KeyError:
            logger.exception("lookup failed")
    finally:
        logger.remove(handler_id)

    await relay.flush()
    await relay.shutdown()

    log = ep.payloads()[0]["logs"][0]
    assert log["level"] == "error"
    assert log["metadata"]["exc_type"] == "KeyError"
    assert "Traceback" in log["metadata"]["exc_traceback"]


@pytest.mark.asyncio
async def test_stdlib_handler_maps_record(shipped):
    relay, ep = shipped
    log = logging.getLogger("billing.charges")
    log.propagate = False
    log.setLevel(logging.INFO)
    handler = RelayHandler(relay)
    log.addHandler(handler)
    try:
        log.info("charged %s cents", 250, extra={"request_id": "r-1", "amount": 250})
        log.debug("below level")
    finally:
        log.removeHandler(handler)

    assert relay.buffer_size == 1
    await relay.flush()
    await relay.shutdown()

    sent = ep.payloads()[0]["logs"][0]
    assert sent["message"] == "charged 250 cents"
    assert sent["level"] == "info"
    assert sent["requestId"] == "r-1"
    assert sent["category"] == "billing.charges"
    assert sent["metadata"]["amount"] == 250
    assert sent["metadata"]["funcName"] == "test_stdlib_handler_maps_record"
    assert "lineno" in sent["metadata"]


@pytest.mark.asyncio
async def test_relay_internal_records_are_skipped(shipped):
    relay, _ = shipped
    internal = logging.getLogger("log_relay.delivery")
    internal.propagate = False
    handler = RelayHandler(relay)
    internal.addHandler(handler)
    try:
        internal.warning("delivery failed")
    finally:
        internal.removeHandler(handler)
    assert relay.buffer_size == 0
    await relay.shutdown()


def test_is_internal():
    assert _is_internal("log_relay")
    assert _is_internal("log_relay.retry")
    assert not _is_internal("log_relayer")
    assert not _is_internal("app")
    assert not _is_internal(None)
