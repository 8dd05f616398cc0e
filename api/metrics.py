"""Prometheus metrics for the query service.

Counters and histograms live in a dedicated registry and are updated
inline by the connector and the query orchestration; `generate()` renders
them for a scrape.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

# Dedicated registry so we don't mix with prometheus_client default metrics
_registry = CollectorRegistry()

_msearch_requests = Counter(
    "qwds_msearch_requests_total",
    "Multi-search batches sent to Quickwit",
    ["outcome"],
    registry=_registry,
)
_msearch_duration = Histogram(
    "qwds_msearch_duration_seconds",
    "Round-trip time of a multi-search batch",
    registry=_registry,
)
_msearch_batch_size = Gauge(
    "qwds_msearch_last_batch_size",
    "Number of searches in the last multi-search batch",
    registry=_registry,
)
_query_errors = Counter(
    "qwds_query_errors_total",
    "Queries answered with an error result",
    ["kind"],
    registry=_registry,
)

OUTCOME_OK = "ok"
OUTCOME_ERROR = "error"


def record_msearch(outcome: str, duration_seconds: float, batch_size: int) -> None:
    _msearch_requests.labels(outcome=outcome).inc()
    _msearch_duration.observe(duration_seconds)
    _msearch_batch_size.set(batch_size)


def record_query_error(kind: str, count: int = 1) -> None:
    """Count `count` per-query error results of the given kind (validation, upstream, ...)."""
    if count <= 0:
        return
    _query_errors.labels(kind=kind).inc(count)


def generate() -> bytes:
    """Return the Prometheus text exposition of the service metrics."""
    return generate_latest(_registry)
