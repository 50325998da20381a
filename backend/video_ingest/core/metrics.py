"""Prometheus metrics for the ingestion service.

Exposes HTTP request metrics plus per-stage pipeline timings, degrade
counters and artifact upload outcomes.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "PROMETHEUS_MULTIPROC_DIR" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "video_ingest_app",
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
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Ingestion Pipeline Metrics
# ============================================
INGESTION_JOBS_TOTAL = Counter(
    "ingestion_jobs_total",
    "Ingestion jobs by final outcome",
    ["outcome"],  # persisted, failed, cancelled
    registry=REGISTRY,
)

INGESTION_JOBS_IN_PROGRESS = Gauge(
    "ingestion_jobs_in_progress",
    "Ingestion jobs currently holding a scratch directory",
    registry=REGISTRY,
)

INGESTION_STAGE_DURATION_SECONDS = Histogram(
    "ingestion_stage_duration_seconds",
    "Wall-clock duration of each pipeline stage",
    ["stage"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 180.0, 600.0],
    registry=REGISTRY,
)

INGESTION_DEGRADED_STAGES_TOTAL = Counter(
    "ingestion_degraded_stages_total",
    "Optional stages that failed and were omitted from the record",
    ["stage"],  # metadata, thumbnail, hls
    registry=REGISTRY,
)

INGESTION_ORPHANED_ARTIFACTS_TOTAL = Counter(
    "ingestion_orphaned_artifacts_total",
    "Published objects left behind by a failed job",
    registry=REGISTRY,
)

ARTIFACT_UPLOADS_TOTAL = Counter(
    "artifact_uploads_total",
    "Object storage uploads by artifact kind and result",
    ["kind", "result"],
    registry=REGISTRY,
)

SCRATCH_CLEANUP_FAILURES_TOTAL = Counter(
    "scratch_cleanup_failures_total",
    "Scratch directories that could not be removed",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get Prometheus content type."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metric."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
