"""
Prometheus-based metrics for the access engine.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
access_events_total = Counter(
    "access_events_total",
    "Access analytics events (authorization, view, pingback, login)",
    ["event"],
)

access_authorization_total = Counter(
    "access_authorization_total",
    "Authorization runs by final state",
    ["outcome"],  # applied, fallback_applied, errored, skipped
)

access_login_total = Counter(
    "access_login_total",
    "Login dialog outcomes",
    ["outcome"],  # success, rejected, failed, deduplicated
)

# Histograms
access_authorization_duration_seconds = Histogram(
    "access_authorization_duration_seconds",
    "Authorization endpoint call duration (fetch only)",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 3],
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
