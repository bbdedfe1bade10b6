"""Log Relay

Reliable multi-destination log shipping with:
- In-memory buffer with size/time flushing and a shutdown drain
- Per-destination circuit breakers
- Exponential backoff with jitter and re-queue of fresh failed batches
- Health and latency accounting per destination
- Prometheus metrics
- Loguru and stdlib logging front-end adapters

Usage:
    from log_relay import RemoteLogger, Destination, LogRecord

    async with RemoteLogger([Destination(name="ingest", url="https://...")]) as relay:
        relay.log(LogRecord(level="info", message="hello"))
"""

from .models import Batch, Destination, LogLevel, LogRecord, PayloadTransform
from .errors import (
    LogRelayError,
    DuplicateDestinationError,
    DestinationNotFoundError,
    NotFoundError,
    DeliveryError,
    CircuitOpenError,
)
from .registry import (
    DestinationRegistry,
    DestinationHealthSnapshot,
    CircuitBreakerState,
    CircuitStateSnapshot,
)
from .circuit import CircuitBreaker
from .delivery import DeliveryEngine
from .retry import RetryPolicy, RetryController
from .events import DeliveryEvent, DeliveryEventBus, DeliveryOutcome
from .payload import default_payload, ndjson_payload
from .relay import RemoteLogger, LoggerStats
from .settings import RelaySettings, get_settings
from .sinks import LoguruSink, RelayHandler
from . import destinations

__version__ = "1.0.0"
__all__ = [
    # models
    "Batch",
    "Destination",
    "LogLevel",
    "LogRecord",
    "PayloadTransform",
    # errors
    "LogRelayError",
    "DuplicateDestinationError",
    "DestinationNotFoundError",
    "NotFoundError",
    "DeliveryError",
    "CircuitOpenError",
    # components
    "DestinationRegistry",
    "DestinationHealthSnapshot",
    "CircuitBreakerState",
    "CircuitStateSnapshot",
    "CircuitBreaker",
    "DeliveryEngine",
    "RetryPolicy",
    "RetryController",
    "DeliveryEvent",
    "DeliveryEventBus",
    "DeliveryOutcome",
    # payloads
    "default_payload",
    "ndjson_payload",
    # runtime
    "RemoteLogger",
    "LoggerStats",
    "RelaySettings",
    "get_settings",
    # adapters
    "LoguruSink",
    "RelayHandler",
    "destinations",
]
