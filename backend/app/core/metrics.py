"""Prometheus metrics for the API and the transcoding workers."""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)
import os

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "creator_media_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Transcoding Pipeline Metrics
# ============================================
TRANSCODE_DISPATCH_TOTAL = Counter(
    "transcode_dispatch_total",
    "Transcode dispatch attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

TRANSCODE_JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Transcode jobs by terminal status",
    ["status"],
    registry=REGISTRY,
)

TRANSCODE_JOB_DURATION_SECONDS = Histogram(
    "transcode_job_duration_seconds",
    "End-to-end transcode job duration in seconds",
    buckets=[10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0, 3600.0],
    registry=REGISTRY,
)

RENDITIONS_PUBLISHED_TOTAL = Counter(
    "renditions_published_total",
    "Renditions whose manifest was published",
    ["tier"],
    registry=REGISTRY,
)

RENDITION_FAILURES_TOTAL = Counter(
    "rendition_failures_total",
    "Renditions dropped from a job, by pipeline stage",
    ["tier", "stage"],
    registry=REGISTRY,
)

ENCODE_DURATION_SECONDS = Histogram(
    "rendition_encode_duration_seconds",
    "Encoder wall time per rendition",
    ["tier"],
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
    registry=REGISTRY,
)

SEGMENT_UPLOADS_TOTAL = Counter(
    "segment_uploads_total",
    "Segment uploads by result",
    ["result"],
    registry=REGISTRY,
)

RAW_ASSET_CLEANUP_FAILURES_TOTAL = Counter(
    "raw_asset_cleanup_failures_total",
    "Raw assets left behind after a completed transcode",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
