"""
Prometheus Metrics for Observability

Tracks pipeline stage latency, upstream fetches and HTTP traffic.
Exposes /metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Completed compositions
compositions_total = Counter(
    "compositions_total",
    "Total number of composition requests by outcome",
    labelnames=["template", "status"]
)

# Upstream CDN fetches
upstream_fetches_total = Counter(
    "upstream_fetches_total",
    "Total number of avatar fetches from the CDN",
    labelnames=["status", "http_status"]
)

upstream_fetch_bytes = Histogram(
    "upstream_fetch_bytes",
    "Size of fetched avatar payloads",
    buckets=[1024, 16384, 65536, 262144, 1048576, 4194304, 8388608]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "avatar_banner_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("decode"):
            # do work
    """
    start = time.perf_counter()
    status = "success"
    try:
        yield
    except BaseException:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_upstream_fetch(status: str, http_status: int = 0, size_bytes: int = 0):
    """Record a CDN fetch attempt."""
    upstream_fetches_total.labels(
        status=status,
        http_status=str(http_status)
    ).inc()
    if size_bytes:
        upstream_fetch_bytes.observe(size_bytes)


def record_composition(template: str, status: str):
    """Record the outcome of a composition request."""
    compositions_total.labels(template=template, status=status).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
