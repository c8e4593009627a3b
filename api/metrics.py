"""
Prometheus metrics for the Vixora API and workers.

Metrics are exposed at /metrics endpoint in Prometheus text format.
"""

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest

# Application info
APP_INFO = Info("vixora", "Vixora application information")

# =============================================================================
# API Metrics
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "vixora_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "vixora_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

VIDEO_PUBLISHES_TOTAL = Counter(
    "vixora_video_publishes_total",
    "Total publish requests",
    ["result"],  # enqueued, pending, inline, rejected
)

VIDEO_VIEWS_TOTAL = Counter(
    "vixora_video_views_total",
    "Total counted video views",
)

DETAIL_CACHE_LOOKUPS_TOTAL = Counter(
    "vixora_detail_cache_lookups_total",
    "Video detail cache lookups",
    ["source"],  # l1, redis, miss, expired, disabled, no-redis, error
)

# =============================================================================
# Processing Metrics
# =============================================================================

PROCESSING_JOBS_TOTAL = Counter(
    "vixora_processing_jobs_total",
    "Total processing runs",
    ["outcome"],  # completed, cancelled, gone, failed
)

PROCESSING_JOBS_ACTIVE = Gauge(
    "vixora_processing_jobs_active",
    "Number of processing runs in flight in this process",
)

PROCESSING_JOB_DURATION_SECONDS = Histogram(
    "vixora_processing_job_duration_seconds",
    "Processing run duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

QUEUE_SIZE = Gauge(
    "vixora_queue_size",
    "Jobs in the processing queue by state",
    ["state"],
)

WORKER_SUPERVISOR_STATE = Gauge(
    "vixora_worker_supervisor_running",
    "1 while the in-process worker pool is running or idle",
)

# =============================================================================
# Storage Metrics
# =============================================================================

ASSET_CLEANUP_FAILURES_TOTAL = Counter(
    "vixora_asset_cleanup_failures_total",
    "Remote asset deletions that failed during purge or permanent delete",
    ["kind"],
)

VIDEOS_PURGED_TOTAL = Counter(
    "vixora_videos_purged_total",
    "Soft-deleted videos removed by the cleanup sweep",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def init_app_info(version: str = "0.1.0"):
    """Initialize application info metric."""
    APP_INFO.info({"version": version, "app": "vixora"})


def record_queue_counts(counts: dict) -> None:
    for state, value in counts.items():
        QUEUE_SIZE.labels(state=state).set(value)
