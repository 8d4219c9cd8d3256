# ==== PROMETHEUS METRICS ==== #

"""
Prometheus metrics for the UMKM licensing core.

Covers the cache-aside layer (hits, misses, errors, invalidations), the
workflow engine (transitions, conflicts, reviewer capacity rejections) and
store latency, plus a router exposing the registry for scraping.
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    REGISTRY
)


# ==== CACHE METRICS ==== #

cache_hits_total = Counter(
    "umkm_cache_hits_total",
    "Total cache hits",
    ["operation"]
)

cache_misses_total = Counter(
    "umkm_cache_misses_total",
    "Total cache misses",
    ["operation"]
)

cache_errors_total = Counter(
    "umkm_cache_errors_total",
    "Total cache backend failures absorbed by the repository",
    ["operation"]
)

cache_invalidations_total = Counter(
    "umkm_cache_invalidations_total",
    "Total invalidation requests issued after writes",
    ["kind"]  # kind: key, pattern
)


# ==== WORKFLOW METRICS ==== #

workflow_transitions_total = Counter(
    "umkm_workflow_transitions_total",
    "Total successful workflow transitions",
    ["action", "to_status"]
)

workflow_rejected_actions_total = Counter(
    "umkm_workflow_rejected_actions_total",
    "Total actions refused because of the current status",
    ["action", "status"]
)

workflow_conflicts_total = Counter(
    "umkm_workflow_conflicts_total",
    "Total conditional writes that lost a concurrent race",
    ["action"]
)

reviewer_capacity_rejections_total = Counter(
    "umkm_reviewer_capacity_rejections_total",
    "Total reviewer assignments refused at the workload cap"
)

notifications_failed_total = Counter(
    "umkm_notifications_failed_total",
    "Total notification deliveries that failed",
    ["template"]
)


# ==== STORE METRICS ==== #

store_operation_duration_seconds = Histogram(
    "umkm_store_operation_duration_seconds",
    "Application store call duration in seconds",
    ["operation"]
)

store_errors_total = Counter(
    "umkm_store_errors_total",
    "Total application store failures",
    ["operation"]
)


# ==== BACKEND BREAKER METRICS ==== #

breaker_state_changes_total = Counter(
    "umkm_breaker_state_changes_total",
    "Total circuit breaker state changes",
    ["breaker", "state"]
)

breaker_rejections_total = Counter(
    "umkm_breaker_rejections_total",
    "Total calls refused while a breaker was open",
    ["breaker"]
)


# System metrics
app_info = Gauge(
    "umkm_app_info",
    "Application information",
    ["version", "environment", "service_name"]
)


def init_metrics(app) -> None:
    """Initialize metrics collection.

    Args:
        app: FastAPI application instance
    """
    from umkm_licensing import __version__
    from umkm_licensing.settings import settings

    app_info.labels(
        version=__version__,
        environment=settings.APP_ENV,
        service_name=settings.SERVICE_NAME
    ).set(1)


# Metrics router for Prometheus scraping
metrics_router = APIRouter()


@metrics_router.get("/metrics")
def get_metrics() -> PlainTextResponse:
    """Expose Prometheus metrics for scraping."""
    return PlainTextResponse(
        generate_latest(REGISTRY).decode("utf-8"),
        media_type="text/plain"
    )
