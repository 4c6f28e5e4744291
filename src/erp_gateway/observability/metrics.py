"""Prometheus metrics for the ERP gateway.

Metrics include:

- Dispatch counters by result (new, replay, failed) and failure kind
- Upstream attempt counters by classification
- Upstream round-trip latency histogram
- Dispatch queue depth gauge
- Deduplication table size gauge
- Cleanup operation tracking

Examples:
    Recording a replayed dispatch::

        from erp_gateway.observability.metrics import record_dispatch

        record_dispatch(result="replay")

    Recording an upstream attempt::

        from erp_gateway.observability.metrics import record_attempt

        record_attempt(classification="retryable", latency_seconds=0.42)
"""

from prometheus_client import Counter, Gauge, Histogram

# Labels: result (new, replay, failed), kind (failure kind or "none")
dispatches_total = Counter(
    "erp_gateway_dispatches_total",
    "Total number of dispatches handled by the gateway facade",
    ["result", "kind"],
)

# Labels: classification (success, retryable, rate_limited, fatal_client, fatal_upstream)
upstream_attempts_total = Counter(
    "erp_gateway_upstream_attempts_total",
    "Total number of upstream round trips by classification",
    ["classification"],
)

upstream_latency_seconds = Histogram(
    "erp_gateway_upstream_latency_seconds",
    "Upstream round-trip latency in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

queue_depth = Gauge(
    "erp_gateway_queue_depth",
    "Number of tasks waiting for an upstream admission slot",
)

dedup_entries = Gauge(
    "erp_gateway_dedup_entries",
    "Number of results currently remembered in the deduplication table",
)

cleanup_operations = Counter(
    "erp_gateway_cleanup_operations_total",
    "Total number of deduplication cleanup sweeps performed",
)

cleanup_records_removed = Counter(
    "erp_gateway_cleanup_records_removed_total",
    "Total number of expired deduplication entries removed by cleanup",
)


def record_dispatch(result: str, kind: str | None = None) -> None:
    """Record a dispatch handled by the gateway facade.

    Args:
        result: new, replay or failed
        kind: Failure kind for failed dispatches

    Examples:
        >>> record_dispatch("new")
        >>> record_dispatch("failed", "rate_limited")
    """
    dispatches_total.labels(result=result, kind=kind or "none").inc()


def record_attempt(classification: str, latency_seconds: float | None = None) -> None:
    """Record one upstream round trip.

    Args:
        classification: "success" or the classifier's verdict
        latency_seconds: Round-trip time, if a response or timeout was observed
    """
    upstream_attempts_total.labels(classification=classification).inc()
    if latency_seconds is not None:
        upstream_latency_seconds.observe(latency_seconds)


def set_queue_depth(depth: int) -> None:
    queue_depth.set(depth)


def set_dedup_entries(count: int) -> None:
    dedup_entries.set(count)


def record_cleanup(records_removed: int) -> None:
    """Record a cleanup operation.

    Args:
        records_removed: Number of expired entries removed
    """
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
