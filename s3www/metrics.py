"""Prometheus metrics definitions for s3www.

This module defines all Prometheus metrics used for observability:
- HTTP request metrics (count, duration, in-flight)
- Object store operation metrics (probes, stream opens)
- Path resolution outcomes
- Response cache metrics
"""

import platform
import time

from prometheus_client import Counter, Gauge, Histogram, Info, ProcessCollector

# ProcessCollector reads /proc, so process_* metrics exist on Linux only
if platform.system() == "Linux":
    try:
        ProcessCollector()
    except ValueError:
        pass  # already registered

# =============================================================================
# Service Health Metrics
# =============================================================================

SERVICE_UP = Gauge(
    "s3www_up",
    "Whether the s3www service is up (1) or down (0)"
)

SERVICE_START_TIME = Gauge(
    "s3www_start_time_seconds",
    "Unix timestamp when the service started"
)

SERVICE_START_TIME.set(time.time())
SERVICE_UP.set(1)

SERVICE_INFO = Info(
    "s3www_service",
    "Service version and served bucket"
)

# =============================================================================
# HTTP Request Metrics
# =============================================================================

REQUEST_COUNT = Counter(
    "s3www_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"]
)

REQUEST_DURATION = Histogram(
    "s3www_request_duration_seconds",
    "HTTP request duration in seconds (until response headers)",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

REQUEST_IN_FLIGHT = Gauge(
    "s3www_requests_in_flight",
    "Number of HTTP requests currently being processed",
    ["method"]
)

ERROR_COUNT = Counter(
    "s3www_errors_total",
    "Total number of errors by type",
    ["type", "endpoint"]
)

# =============================================================================
# Object Store Metrics
# =============================================================================

STORE_OPERATIONS_TOTAL = Counter(
    "s3www_store_operations_total",
    "Object store calls by operation and outcome",
    ["operation", "status"]
)

STORE_OPERATION_DURATION = Histogram(
    "s3www_store_operation_duration_seconds",
    "Object store call latency in seconds",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

RESOLUTIONS_TOTAL = Counter(
    "s3www_resolutions_total",
    "Path resolutions by outcome",
    ["outcome"]
)

BYTES_SERVED_TOTAL = Counter(
    "s3www_bytes_served_total",
    "Total object bytes streamed to clients"
)

# =============================================================================
# Response Cache Metrics
# =============================================================================

CACHE_HITS = Counter(
    "s3www_cache_hits_total",
    "Responses served from the response cache"
)

CACHE_MISSES = Counter(
    "s3www_cache_misses_total",
    "Cacheable requests that were not in the response cache"
)

CACHE_REFRESHES = Counter(
    "s3www_cache_refreshes_total",
    "Requests that forced a cache refresh via the refresh key"
)

CACHE_ENTRIES = Gauge(
    "s3www_cache_entries",
    "Number of responses currently held in the response cache"
)


def set_service_info(version: str, bucket: str, root: str) -> None:
    """Set service info metric."""
    SERVICE_INFO.info({
        "version": version,
        "bucket": bucket,
        "root": root or "/",
    })
