"""Prometheus metrics for the transcoding pipeline and delivery cache."""

import os

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    CollectorRegistry,
    multiprocess,
    start_http_server,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., several Celery workers)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


APP_INFO = Info(
    "video_delivery_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Pipeline Metrics
# ============================================
PIPELINE_RUNS_TOTAL = Counter(
    "transcode_pipeline_runs_total",
    "Pipeline runs by strategy and outcome",
    ["strategy", "outcome"],
    registry=REGISTRY,
)

RUNG_ENCODES_TOTAL = Counter(
    "transcode_rung_encodes_total",
    "Local rung encodes by quality and outcome",
    ["quality", "outcome"],
    registry=REGISTRY,
)

RUNG_ENCODE_DURATION_SECONDS = Histogram(
    "transcode_rung_encode_duration_seconds",
    "Wall time of one local rung encode",
    ["quality"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
    registry=REGISTRY,
)

CLOUD_JOB_POLLS_TOTAL = Counter(
    "transcode_cloud_job_polls_total",
    "Cloud job status polls by observed state",
    ["state"],
    registry=REGISTRY,
)


# ============================================
# Cache Metrics
# ============================================
CACHE_LOOKUPS_TOTAL = Counter(
    "delivery_cache_lookups_total",
    "Cache lookups by namespace and result",
    ["namespace", "result"],
    registry=REGISTRY,
)


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


def start_metrics_server(port: int) -> None:
    """Expose the registry over HTTP for scraping. Port 0 disables it."""
    if port:
        start_http_server(port, registry=REGISTRY)
