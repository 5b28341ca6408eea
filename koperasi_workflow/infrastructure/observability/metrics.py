"""Prometheus metrics for workflow throughput, refusals and bulk outcomes"""

from prometheus_client import Counter, Histogram

# Transition metrics
transition_counter = Counter(
    "koperasi_transition_total",
    "Committed workflow transitions",
    ["request_type", "action"],  # SUBMITTED | APPROVED | REJECTED | CONFIRMED | REVISED | CANCELLED
)

rejected_operation_counter = Counter(
    "koperasi_rejected_operation_total",
    "Operations refused by a domain rule",
    ["operation", "error_code"],
)

transition_latency_histogram = Histogram(
    "koperasi_transition_latency_seconds",
    "Time to validate, mutate and persist one transition",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

# Bulk metrics
bulk_item_counter = Counter(
    "koperasi_bulk_item_total",
    "Items processed by bulk operations",
    ["operation", "outcome"],  # succeeded | failed
)


def record_transition(request_type: str, action: str, duration_seconds: float, operation: str) -> None:
    transition_counter.labels(request_type=request_type, action=action).inc()
    transition_latency_histogram.labels(operation=operation).observe(duration_seconds)


def record_rejection(operation: str, error_code: str) -> None:
    rejected_operation_counter.labels(operation=operation, error_code=error_code).inc()


def record_bulk_outcome(operation: str, succeeded: int, failed: int) -> None:
    """Record bulk batch results for monitoring partial-failure rates"""
    if succeeded:
        bulk_item_counter.labels(operation=operation, outcome="succeeded").inc(succeeded)
    if failed:
        bulk_item_counter.labels(operation=operation, outcome="failed").inc(failed)
