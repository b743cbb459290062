"""Health check endpoints for service monitoring.

Health Rules:
    healthy - transcoder process running and parameter channel bound
    unhealthy - anything else (503)

Segment generation is reported but does not affect health, since the
first segments appear only a few seconds after the process starts.

Usage:
    >>> GET /api/health
    {"healthy": true, "services": {"ffmpeg": true, "zmq": true, "hls": true}, ...}

    >>> GET /health/live
    {"status": "alive"}

Logging Strategy:
    DEBUG - Health check calls
    WARN  - Unhealthy status
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from .. import metrics
from ..services.container import get_services
from ..services.orchestrator import StreamerServices

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

ProbeStatus = Literal["alive"]


@router.get("/api/health")
async def health_check(services: StreamerServices = Depends(get_services)) -> JSONResponse:
    """Report per-service state; 503 unless process and channel are up."""
    ffmpeg_running = services.supervisor.is_running()
    zmq_connected = services.parameters.is_connected()
    healthy = ffmpeg_running and zmq_connected

    result = "healthy" if healthy else "unhealthy"
    metrics.update_health_status(result)
    metrics.health_checks_total.labels(check_type="full", status=result).inc()

    if healthy:
        logger.debug("Health check: healthy")
    else:
        logger.warning(f"Health check: unhealthy (ffmpeg={ffmpeg_running}, zmq={zmq_connected})")

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "healthy": healthy,
            "services": {
                "ffmpeg": ffmpeg_running,
                "zmq": zmq_connected,
                "hls": services.retention.is_generating_segments(),
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, ProbeStatus]:
    """Liveness probe; does not check dependencies."""
    logger.debug("Liveness check called")
    metrics.health_checks_total.labels(check_type="live", status="alive").inc()
    return {"status": "alive"}
