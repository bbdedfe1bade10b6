"""
Unit tests for payload builders.
"""

import json

from conftest import records
from log_relay import LogRecord
from log_relay.payload import (
    JSON_CONTENT_TYPE,
    NDJSON_CONTENT_TYPE,
    default_payload,
    ndjson_payload,
    serialize,
)


def test_default_envelope():
    payload = default_payload(records(2))
    assert payload["version"] == "1.0"
    assert payload["count"] == 2
    assert payload["timestamp"].endswith("+00:00")
    assert [log["message"] for log in payload["logs"]] == ["msg-0", "msg-1"]


def test_wire_record_fields():
    rec = LogRecord(
        level="warn",
        message="slow query",
        metadata={"ms": 812},
        category="db",
        namespace="orders",
        request_id="abc",
    )
    wire = default_payload([rec])["logs"][0]
    assert wire["level"] == "warning"
    assert wire["requestId"] == "abc"
    assert wire["namespace"] == "orders"
    assert wire["metadata"] == {"ms": 812}


def test_ndjson_payload():
    text = ndjson_payload(records(3))
    assert text.endswith("\n")
    lines = text.splitlines()
    assert [json.loads(line)["message"] for line in lines] == ["msg-0", "msg-1", "msg-2"]
    assert ndjson_payload([]) == ""


def test_serialize():
    body, ctype = serialize({"a": 1})
    assert json.loads(body) == {"a": 1}
    assert ctype == JSON_CONTENT_TYPE

    assert serialize("x\n") == (b"x\n", NDJSON_CONTENT_TYPE)
    assert serialize(b"\x00raw") == (b"\x00raw", "application/octet-stream")
