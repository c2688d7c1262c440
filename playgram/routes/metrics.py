"""
Prometheus metrics endpoint.

Exposes system metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Webhook Metrics
# ============================================

webhook_deliveries = Counter(
    'webhook_deliveries_total',
    'Total webhook delivery attempts',
    ['event', 'status']
)

webhook_delivery_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Webhook delivery duration in seconds',
    ['event'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Queue Metrics
# ============================================

jobs_queued = Counter(
    'jobs_queued_total',
    'Total jobs queued',
    ['queue']
)

jobs_completed = Counter(
    'jobs_completed_total',
    'Total jobs completed successfully',
    ['queue']
)

jobs_failed = Counter(
    'jobs_failed_total',
    'Total jobs failed permanently',
    ['queue']
)

jobs_retry_total = Counter(
    'jobs_retry_total',
    'Total job retry attempts',
    ['queue']
)

# ============================================
# Cache Metrics
# ============================================

cache_hits = Counter(
    'cache_hits_total',
    'Cache hits by tier',
    ['tier']
)

cache_misses = Counter(
    'cache_misses_total',
    'Cache misses'
)

# ============================================
# Bulk Sync Metrics
# ============================================

sync_targets = Counter(
    'sync_targets_total',
    'Bulk sync targets by outcome',
    ['outcome']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_webhook_delivery(event: str, status: str, duration_seconds: float):
    """Record one webhook delivery attempt."""
    webhook_deliveries.labels(event=event, status=status).inc()
    webhook_delivery_duration.labels(event=event).observe(duration_seconds)


def track_job_queued(queue: str):
    """Record a job being queued."""
    jobs_queued.labels(queue=queue).inc()


def track_job_completed(queue: str):
    """Record a job completing successfully."""
    jobs_completed.labels(queue=queue).inc()


def track_job_failed(queue: str):
    """Record a job failing permanently."""
    jobs_failed.labels(queue=queue).inc()


def track_job_retry(queue: str):
    """Record a job retry being scheduled."""
    jobs_retry_total.labels(queue=queue).inc()


def track_cache_hit(tier: str):
    cache_hits.labels(tier=tier).inc()


def track_cache_miss():
    cache_misses.inc()


def track_sync_target(outcome: str):
    """Record one bulk sync target as updated or failed."""
    sync_targets.labels(outcome=outcome).inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
