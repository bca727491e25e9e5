"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
purchases_initiated_total = Counter(
    "purchases_initiated_total",
    "Total number of purchases initiated",
    ["entitlement_type", "account_tier"],
)

payment_transitions_total = Counter(
    "payment_transitions_total",
    "Total ledger transitions",
    ["status"],  # verified, failed
)

payment_callback_duplicates_total = Counter(
    "payment_callback_duplicates_total",
    "Callbacks delivered for already-terminal transactions",
)

entitlement_activations_total = Counter(
    "entitlement_activations_total",
    "Total entitlement activations",
    ["entitlement_type"],
)

entitlement_revocations_total = Counter(
    "entitlement_revocations_total",
    "Total administrative revocations",
    ["entitlement_type"],
)

pricing_conflicts_total = Counter(
    "pricing_conflicts_total",
    "Resolutions that found more than one active pricing row",
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["operation", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway request duration",
    ["operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
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
