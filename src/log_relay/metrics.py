"""
Prometheus collectors for the log relay.

Collectors live in the global prometheus_client REGISTRY; import this module
at app startup (or just use the relay) and expose them with your usual
exporter.
"""

from prometheus_client import Counter, Gauge, Histogram


DELIVERY_ATTEMPTS_TOTAL = Counter(
    "log_relay_delivery_attempts_total",
    "Delivery attempts per destination and outcome",
    ["destination", "outcome"],
)

DELIVERY_LATENCY_MS = Histogram(
    "log_relay_delivery_latency_ms",
    "Delivery attempt latency in milliseconds",
    ["destination"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

RECORDS_DROPPED_TOTAL = Counter(
    "log_relay_records_dropped_total",
    "Records dropped after exhausted retries or circuit-open skips",
    ["destination", "reason"],
)

RECORDS_REQUEUED_TOTAL = Counter(
    "log_relay_records_requeued_total",
    "Records merged back into the buffer after a failed batch",
    ["destination"],
)

CIRCUIT_SKIPS_TOTAL = Counter(
    "log_relay_circuit_skips_total",
    "Batches not attempted because the circuit breaker was open",
    ["destination"],
)

COMPRESSION_FAILURES_TOTAL = Counter(
    "log_relay_compression_failures_total",
    "Payloads sent uncompressed because gzip compression failed",
)

BUFFER_SIZE = Gauge(
    "log_relay_buffer_size",
    "Records waiting in the live buffer",
)


class MetricsRegistry:
    """Structured access to the relay's collectors."""

    delivery_attempts_total = DELIVERY_ATTEMPTS_TOTAL
    delivery_latency_ms = DELIVERY_LATENCY_MS
    records_dropped_total = RECORDS_DROPPED_TOTAL
    records_requeued_total = RECORDS_REQUEUED_TOTAL
    circuit_skips_total = CIRCUIT_SKIPS_TOTAL
    compression_failures_total = COMPRESSION_FAILURES_TOTAL
    buffer_size = BUFFER_SIZE


metrics_registry = MetricsRegistry()
