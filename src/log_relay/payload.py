"""
Payload builders.

The default envelope is backend-agnostic; destinations that expect another
shape supply a transform (``ndjson_payload`` covers line-delimited backends).
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from .models import LogRecord

PAYLOAD_VERSION = "1.0"
JSON_CONTENT_TYPE = "application/json"
NDJSON_CONTENT_TYPE = "application/x-ndjson"


def default_payload(records: Sequence[LogRecord]) -> dict[str, Any]:
    return {
        "version": PAYLOAD_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "count": len(records),
        "logs": [r.to_wire() for r in records],
    }


def ndjson_payload(records: Iterable[LogRecord]) -> str:
    """Encode records as newline-delimited JSON, one wire record per line.

    Returns an empty string for no records.
    """
    lines = [json.dumps(r.to_wire(), default=str) for r in records]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def serialize(payload: Any) -> tuple[bytes, str]:
    """Turn a payload into request bytes and a default content type.

    ``str`` payloads are treated as already-encoded NDJSON, ``bytes`` pass
    through untouched, anything else is JSON encoded.
    """
    if isinstance(payload, bytes):
        return payload, "application/octet-stream"
    if isinstance(payload, str):
        return payload.encode("utf-8"), NDJSON_CONTENT_TYPE
    return json.dumps(payload, default=str).encode("utf-8"), JSON_CONTENT_TYPE
