"""Prometheus metrics for observability.

Provides metrics for:
- HTTP requests (count, latency)
- FFmpeg process supervision (starts, restarts, spawn failures, forced kills)
- Input channel updates (content, layer) and filter instructions
- HLS output retention (segments deleted, current segment count)
- System health (status checks)

Logging Strategy:
    INFO  - Module initialization
    ERROR - Metric generation failures
"""
from __future__ import annotations

import logging

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

logger = logging.getLogger(__name__)

# ============================================================================
# Application Info
# ============================================================================

app_info = Info("hlsstreamer_app", "Application information")
app_info.info({
    "version": "1.0.0",
    "name": "hlsstreamer",
    "description": "Live HLS streaming with hot-swappable inputs"
})

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

# ============================================================================
# FFmpeg Process Metrics
# ============================================================================

ffmpeg_process_active = Gauge("ffmpeg_process_active", "1 while the transcoder process is running")
ffmpeg_process_starts_total = Counter("ffmpeg_process_starts_total", "Transcoder process starts")
ffmpeg_process_restarts_total = Counter(
    "ffmpeg_process_restarts_total",
    "Automatic restarts after unexpected exits"
)
ffmpeg_spawn_failures_total = Counter("ffmpeg_spawn_failures_total", "Failed process spawns")
ffmpeg_forced_kills_total = Counter(
    "ffmpeg_forced_kills_total",
    "Processes killed after the stop grace window"
)
ffmpeg_exits_total = Counter(
    "ffmpeg_exits_total",
    "Transcoder process exits",
    ["reason"]  # requested, unexpected
)

# ============================================================================
# Input Update Metrics
# ============================================================================

channel_updates_total = Counter(
    "channel_updates_total",
    "Content and layer channel updates",
    ["channel", "status"]  # channel: content, layer; status: success, failure
)

filter_instructions_total = Counter(
    "filter_instructions_total",
    "Live filter instructions sent",
    ["status"]  # success, failure
)

# ============================================================================
# HLS Output Metrics
# ============================================================================

hls_segments_deleted_total = Counter("hls_segments_deleted_total", "Segments removed by retention")
hls_segments_current = Gauge("hls_segments_current", "Segments currently on disk")

# ============================================================================
# System Health Metrics
# ============================================================================

health_status = Gauge("health_status", "Health status (1=healthy, 0=unhealthy)")

health_checks_total = Counter(
    "health_checks_total",
    "Health check requests",
    ["check_type", "status"]
)

# ============================================================================
# Metrics Export
# ============================================================================

def get_metrics() -> tuple[bytes, int, dict[str, str]]:
    """Generate Prometheus metrics in text format.

    Returns:
        (body, status_code, headers) for FastAPI Response
    """
    try:
        metrics = generate_latest(REGISTRY)
        return (metrics, 200, {"Content-Type": CONTENT_TYPE_LATEST})
    except Exception as e:
        logger.error(f"Metrics generation failed: {e}", exc_info=True)
        return (b"# Error\n", 500, {"Content-Type": "text/plain"})


# ============================================================================
# Helper Functions
# ============================================================================

def track_http_request(method: str, endpoint: str, status_code: int) -> None:
    """Track HTTP request in metrics."""
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=str(status_code)
    ).inc()


def update_health_status(status: str) -> None:
    """Update health status gauge.

    Args:
        status: "healthy" (1.0) or "unhealthy" (0.0)
    """
    health_status.set(1.0 if status == "healthy" else 0.0)


logger.info("Prometheus metrics initialized")
