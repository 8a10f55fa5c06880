"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
ledger_operations_total = Counter(
    "ledger_operations_total",
    "Total balance ledger operations",
    ["operation", "transaction_type"],  # debit/credit
)

insufficient_funds_total = Counter(
    "insufficient_funds_total",
    "Total debits rejected for insufficient balance",
)

slots_purchased_total = Counter(
    "slots_purchased_total",
    "Total slots created by keyword purchases",
)

guarantee_transitions_total = Counter(
    "guarantee_transitions_total",
    "Guarantee request/slot state transitions",
    ["entity", "new_status"],
)

refunds_processed_total = Counter(
    "refunds_processed_total",
    "Refunds handled by the payout processor",
    ["result"],  # success, failed
)

inquiry_messages_total = Counter(
    "inquiry_messages_total",
    "Inquiry chat messages stored",
    ["sender_role"],
)

# Histograms
refund_sweep_duration_seconds = Histogram(
    "refund_sweep_duration_seconds",
    "Scheduled refund sweep duration",
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60],
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
