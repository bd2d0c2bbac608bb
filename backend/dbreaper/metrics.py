"""
Prometheus metrics for the reaper

Provides:
- HTTP request latency and counts
- Reap outcomes, rows reaped, export failures and durations
"""
from prometheus_client import Counter, Histogram, Gauge, Info, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response
import time
import logging

from dbreaper import __version__

logger = logging.getLogger(__name__)

metrics_router = APIRouter(tags=["metrics"])

# =============================================================================
# HTTP Metrics
# =============================================================================

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"]
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"]
)

# =============================================================================
# Reaper Metrics
# =============================================================================

REAPS_TOTAL = Counter(
    "reaper_reaps_total",
    "Total number of reap attempts",
    ["table", "status"]  # success, skipped, failed, export_failed
)

ROWS_REAPED = Counter(
    "reaper_rows_reaped_total",
    "Total number of rows moved into backup tables",
    ["table"]
)

EXPORT_FAILURES = Counter(
    "reaper_export_failures_total",
    "Dump runs that failed or timed out, leaving a backup table behind",
    ["table"]
)

REAP_DURATION = Histogram(
    "reaper_reap_duration_seconds",
    "Duration of a reap including export",
    ["table"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300, 900, 3600]
)

# =============================================================================
# System Info
# =============================================================================

APP_INFO = Info(
    "dbreaper",
    "DB Reaper application information"
)

APP_INFO.info({
    "version": __version__,
    "framework": "fastapi"
})


@metrics_router.get("/metrics", include_in_schema=False)
async def metrics():
    """
    Prometheus metrics endpoint

    Returns all application metrics in Prometheus text format.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


async def metrics_middleware(request, call_next):
    """
    Middleware to collect HTTP request metrics
    """
    method = request.method
    # Table names in paths would blow up label cardinality
    parts = request.url.path.split("/")
    if len(parts) > 4 and parts[1:4] == ["api", "reaper", "tables"]:
        parts[4] = "{table}"
    endpoint = "/".join(parts)

    HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()
    start_time = time.time()
    status_code = "500"

    try:
        response = await call_next(request)
        status_code = str(response.status_code)
        return response
    finally:
        HTTP_REQUEST_DURATION.labels(
            method=method,
            endpoint=endpoint,
            status_code=status_code
        ).observe(time.time() - start_time)
        HTTP_REQUESTS_TOTAL.labels(
            method=method,
            endpoint=endpoint,
            status_code=status_code
        ).inc()
        HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()


# =============================================================================
# Helper Functions
# =============================================================================

def record_reap(table: str, status: str, rows_reaped: int = 0, duration: float = None):
    """Record the outcome of one reap"""
    REAPS_TOTAL.labels(table=table, status=status).inc()
    if rows_reaped:
        ROWS_REAPED.labels(table=table).inc(rows_reaped)
    if status == "export_failed":
        EXPORT_FAILURES.labels(table=table).inc()
    if duration is not None:
        REAP_DURATION.labels(table=table).observe(duration)
