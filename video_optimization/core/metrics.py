"""Prometheus metrics for the HTTP surface and the transcoding pipeline."""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "video_optimization_app",
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
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, 1800.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)

RATE_LIMITED_TOTAL = Counter(
    "rate_limited_requests_total",
    "Requests rejected by the per-client rate limiter",
    registry=REGISTRY,
)

RATE_LIMITER_CLIENTS = Gauge(
    "rate_limiter_clients",
    "Number of client keys tracked by the rate limiter",
    registry=REGISTRY,
)


# ============================================
# Pipeline Metrics
# ============================================
PIPELINE_RUNS_TOTAL = Counter(
    "pipeline_runs_total",
    "Pipeline runs by flow and outcome",
    ["flow", "outcome"],
    registry=REGISTRY,
)

PIPELINE_STEP_DURATION_SECONDS = Histogram(
    "pipeline_step_duration_seconds",
    "Duration of individual pipeline steps in seconds",
    ["step"],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0, 1800.0],
    registry=REGISTRY,
)

TOOL_INVOCATIONS_TOTAL = Counter(
    "tool_invocations_total",
    "External tool invocations by command and status",
    ["command", "status"],
    registry=REGISTRY,
)

TEMP_CLEANUP_FAILURES_TOTAL = Counter(
    "temp_cleanup_failures_total",
    "Temporary artifacts that could not be removed",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
