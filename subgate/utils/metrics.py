"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
access_decisions_total = Counter(
    "access_decisions_total",
    "Total access decisions by outcome",
    ["access", "reason"],
)

entitlement_lookup_failures_total = Counter(
    "entitlement_lookup_failures_total",
    "Entitlement lookups that failed and were treated as not entitled",
)

subscription_transitions_total = Counter(
    "subscription_transitions_total",
    "Lifecycle status transitions applied by sweeps",
    ["kind", "status"],  # kind: merchant / platform
)

notifications_total = Counter(
    "notifications_total",
    "Outbound notification attempts",
    ["channel", "status"],  # status: sent / failed / skipped
)

webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Merchant webhook POSTs by outcome",
    ["event", "status"],  # status: delivered / failed
)

# Histograms
sweep_duration_seconds = Histogram(
    "sweep_duration_seconds",
    "Lifecycle sweep duration",
    ["kind"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300],
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
