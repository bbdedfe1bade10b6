"""
Front-end adapters that feed application logs into a RemoteLogger.

- LoguruSink: ``loguru.logger.add(LoguruSink(relay))``
- RelayHandler: ``logging.getLogger().addHandler(RelayHandler(relay))``

Records emitted by log_relay itself are skipped so the relay never ships
its own diagnostics (which would feed back into the buffer on failures).
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Optional

from .models import LogLevel, LogRecord
from .relay import RemoteLogger

_INTERNAL_PREFIX = "log_relay"

# Keys lifted out of extra/metadata into LogRecord fields
_CORRELATION_KEYS = {"request_id": "request_id", "requestId": "request_id"}

# Standard logging.LogRecord attributes that are not user extras
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


def _is_internal(name: Optional[str]) -> bool:
    return bool(name) and (name == _INTERNAL_PREFIX or name.startswith(_INTERNAL_PREFIX + "."))


def _level_from_name(name: str) -> LogLevel:
    try:
        return LogLevel.parse(name)
    except ValueError:
        return LogLevel.INFO


def _build_record(
    *,
    level: LogLevel,
    message: str,
    timestamp: datetime,
    extra: dict[str, Any],
    default_category: Optional[str],
) -> LogRecord:
    metadata = dict(extra)
    request_id = None
    for key in _CORRELATION_KEYS:
        if key in metadata:
            request_id = str(metadata.pop(key))
    category = metadata.pop("category", None) or default_category
    namespace = metadata.pop("namespace", None)
    return LogRecord(
        level=level,
        message=message,
        timestamp=timestamp,
        metadata=metadata or None,
        category=category,
        namespace=namespace,
        request_id=request_id,
    )


class LoguruSink:
    """Loguru sink forwarding messages to a RemoteLogger.

    ``extra`` values (from ``logger.bind``/``contextualize``) become metadata;
    ``request_id``, ``category`` and ``namespace`` are lifted to their fields.
    The emitting module name is the default category.
    """

    def __init__(self, relay: RemoteLogger) -> None:
        self._relay = relay

    def __call__(self, message: Any) -> None:
        record = message.record
        if _is_internal(record.get("name")):
            return

        extra = {k: v for k, v in record["extra"].items()}
        exception = record.get("exception")
        if exception is not None and exception.type is not None:
            extra["exc_type"] = exception.type.__name__
            extra["exc_message"] = str(exception.value)
            extra["exc_traceback"] = "".join(
                traceback.format_exception(exception.type, exception.value, exception.traceback)
            )

        self._relay.log(
            _build_record(
                level=_level_from_name(record["level"].name),
                message=record["message"],
                timestamp=record["time"].astimezone(timezone.utc),
                extra=extra,
                default_category=record.get("name"),
            )
        )


class RelayHandler(logging.Handler):
    """Stdlib logging handler forwarding records to a RemoteLogger.

    Example:
        relay = RemoteLogger([...])
        logging.getLogger().addHandler(RelayHandler(relay))
    """

    def __init__(self, relay: RemoteLogger, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._relay = relay

    def emit(self, record: logging.LogRecord) -> None:
        if _is_internal(record.name):
            return
        try:
            extra = {
                key: value
                for key, value in record.__dict__.items()
                if key not in _STANDARD_LOGRECORD_ATTRS and not key.startswith("_")
            }
            extra.update(
                {
                    "module": record.module,
                    "funcName": record.funcName,
                    "lineno": record.lineno,
                }
            )
            if record.exc_info and record.exc_info[0] is not None:
                exc_type, exc_value, exc_tb = record.exc_info
                extra["exc_type"] = exc_type.__name__
                extra["exc_message"] = str(exc_value)
                extra["exc_traceback"] = "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                )

            self._relay.log(
                _build_record(
                    level=_level_from_name(record.levelname),
                    message=record.getMessage(),
                    timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
                    extra=extra,
                    default_category=record.name,
                )
            )
        except Exception:
            self.handleError(record)
