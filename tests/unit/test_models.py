"""
Unit tests for LogLevel, LogRecord, Destination and Batch.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from log_relay import Batch, Destination, LogLevel, LogRecord
from log_relay.payload import ndjson_payload


def test_levels_are_ordered():
    assert LogLevel.DEBUG < LogLevel.INFO < LogLevel.SUCCESS
    assert LogLevel.SUCCESS < LogLevel.WARNING < LogLevel.ERROR < LogLevel.CRITICAL
    assert LogLevel.ERROR >= LogLevel.WARNING
    assert not LogLevel.INFO > LogLevel.ERROR


def test_level_parse_aliases():
    assert LogLevel.parse("INFO") is LogLevel.INFO
    assert LogLevel.parse("TRACE") is LogLevel.DEBUG
    assert LogLevel.parse("warn") is LogLevel.WARNING
    assert LogLevel.parse("FATAL") is LogLevel.CRITICAL
    assert LogLevel.parse(LogLevel.SUCCESS) is LogLevel.SUCCESS

    with pytest.raises(ValueError):
        LogLevel.parse("verbose")


def test_record_is_immutable():
    rec = LogRecord(level="error", message="boom")
    assert rec.level is LogLevel.ERROR
    with pytest.raises(ValidationError):
        rec.message = "changed"  # type: ignore


def test_record_wire_format():
    ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    rec = LogRecord(
        level="warning",
        message="disk low",
        timestamp=ts,
        metadata={"free": 3},
        category="infra",
        namespace="node-1",
        request_id="req-9",
    )
    assert rec.to_wire() == {
        "timestamp": "2024-05-01T12:00:00+00:00",
        "level": "warning",
        "message": "disk low",
        "metadata": {"free": 3},
        "category": "infra",
        "requestId": "req-9",
        "namespace": "node-1",
    }


def test_naive_timestamp_assumed_utc():
    rec = LogRecord(message="x", timestamp=datetime(2024, 1, 1, 0, 0))
    assert rec.timestamp.tzinfo == timezone.utc


def test_destination_defaults_and_validation():
    d = Destination(name="a", url="http://a/ingest", method="put")
    assert d.method == "PUT"
    assert d.timeout == 10.0
    assert d.retry_attempts is None
    assert d.retry_delay_ms == 1000

    with pytest.raises(ValidationError):
        Destination(name=" ", url="http://a")
    with pytest.raises(ValidationError):
        Destination(name="a", url="http://a", method="DELETE")
    with pytest.raises(ValidationError):
        Destination(name="a", url="http://a", timeout=0)
    with pytest.raises(ValidationError):
        Destination(name="a", url="http://a", retry_attempts=0)


def test_destination_patched_keeps_transform():
    d = Destination(name="a", url="http://a", transform=ndjson_payload)
    p = d.patched(timeout=2.5, headers={"X-Team": "core"})
    assert p.timeout == 2.5
    assert p.headers == {"X-Team": "core"}
    assert p.transform is ndjson_payload
    assert d.timeout == 10.0  # original untouched

    with pytest.raises(ValidationError):
        d.patched(method="PATCH")


def test_batch_for_destination_shares_records():
    batch = Batch.of([LogRecord(message="a"), LogRecord(message="b")])
    batch.attempt_count = 2

    view = batch.for_destination()
    assert view.attempt_count == 0
    assert view.records is batch.records
    assert view.batch_id == batch.batch_id
    assert view.created_at == batch.created_at
    assert len(view) == 2
    assert view.age >= 0
