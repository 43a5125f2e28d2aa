"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
credit_operations_total = Counter(
    "credit_operations_total",
    "Total credit ledger operations",
    ["operation", "result"],  # reserve/compensate/grant x applied/duplicate/rejected/error
)

balance_rejected_total = Counter(
    "balance_rejected_total",
    "Total reservations rejected for insufficient balance",
)

refund_failures_total = Counter(
    "refund_failures_total",
    "Compensations that could not be applied (need manual reconciliation)",
)

generation_requests_total = Counter(
    "generation_requests_total",
    "Total generation/edit requests by reservation timing",
    ["operation", "timing"],
)

generation_tasks_total = Counter(
    "generation_tasks_total",
    "Total generation tasks by outcome",
    ["outcome"],  # done, TIMEOUT, GENERATION_ERROR, STORAGE_ERROR, DATABASE_ERROR
)

rendition_failures_total = Counter(
    "rendition_failures_total",
    "Secondary renditions that failed to produce or upload",
    ["width"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
generation_task_duration_seconds = Histogram(
    "generation_task_duration_seconds",
    "Single generation task duration (backend + upload + finalize)",
    buckets=[1, 5, 10, 30, 60, 120, 300],
)

batch_size = Histogram(
    "generation_batch_size",
    "Requested variations per generation request",
    buckets=[1, 2, 3, 4, 8],
)

# Gauges
active_tasks = Gauge(
    "active_generation_tasks",
    "Currently running generation tasks",
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
