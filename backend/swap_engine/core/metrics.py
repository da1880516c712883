"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Targeting metrics
targeting_operations = Counter(
    'targeting_operations_total',
    'Targeting engine operations',
    ['operation', 'result']  # target/retarget/accept/...; success, rejected, conflict, error
)

proposal_transitions = Counter(
    'proposal_transitions_total',
    'Proposal (targeting edge) status transitions',
    ['status']
)

commit_latency = Histogram(
    'commit_latency_seconds',
    'Latency of the accept commit transaction',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Database metrics
db_operations = Counter(
    'db_operations_total',
    'Total database operations',
    ['operation']  # read, write, retry
)

db_retries = Counter(
    'db_retry_attempts_total',
    'Transaction retries due to serialization failures or version conflicts'
)

# Background workers
sweeper_expired = Counter(
    'sweeper_expired_total',
    'Proposals expired by the sweeper',
    ['kind']  # auction, ttl
)

outbox_deliveries = Counter(
    'outbox_deliveries_total',
    'Transition event deliveries to the ledger',
    ['result']  # sent, retry, dead
)

outbox_pending = Gauge(
    'outbox_pending_events',
    'Transition events claimed in the last relay batch'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_operation(operation: str, result: str):
    """Record an engine operation. Result: success, rejected, conflict, error"""
    targeting_operations.labels(operation=operation, result=result).inc()


def record_transition(status: str, count: int = 1):
    proposal_transitions.labels(status=status).inc(count)


def record_db_operation(operation: str):
    """Record database operation. Operation: read, write, retry"""
    db_operations.labels(operation=operation).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
